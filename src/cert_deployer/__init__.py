"""
cert_deployer — certificate deployment orchestration engine.

Uploads a PEM certificate + private key to a remote platform's certificate
store exactly once per distinct content, resolves which domains/resources
must be bound to it, and propagates the binding across them — either by
direct fan-out or through an asynchronous platform job that is polled
until it completes.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
