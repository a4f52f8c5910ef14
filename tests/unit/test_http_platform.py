"""
Unit tests for the HTTP platform adapter.

Uses respx to mock httpx HTTP calls (never makes real HTTP requests).

Test categories per port:
  - Success: correct response → Result.success with domain values
  - Request shape: path, query parameters, JSON body, auth header
  - Errors: 404 → NOT_FOUND, other statuses → EXTERNAL_SERVICE_ERROR with
    the failing operation, malformed payloads and network errors never raise
  - Binding: already-bound short-circuit and stale-binding pruning
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import respx
from railway import ErrorCode, ResultAssertions

from cert_deployer.adapters.http_platform import HttpPlatformClient
from cert_deployer.domain.context import DeployContext
from cert_deployer.domain.models import DeployTarget, JobProgress, JobRequest, UploadResult
from cert_deployer.domain.pagination import PageRequest
from cert_deployer.executor import UploadedCertificateCache
from tests.conftest import make_certificate_pem, make_chain_pem
from tests.fakes import RecordingLogger

BASE_URL = "https://platform.example.com/api"
TOKEN = "test-token"


@pytest.fixture()
def client() -> HttpPlatformClient:
    return HttpPlatformClient(base_url=BASE_URL + "/", api_token=TOKEN, timeout=5)


@pytest.fixture()
def ctx() -> DeployContext:
    return DeployContext.background()


def _body(route: respx.Route) -> dict:
    return json.loads(route.calls.last.request.content)


# ═══════════════════════════════════════════════════════════════════════
# CertificateStore
# ═══════════════════════════════════════════════════════════════════════


class TestListCertificates:
    """
    GIVEN the platform lists certificates
    WHEN list_certificates is called
    THEN every reported signal is mapped onto StoredCertificate.
    """

    @respx.mock
    def test_maps_summaries(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        route = respx.get(f"{BASE_URL}/certificates").mock(
            return_value=httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": 7,
                            "name": "certdeploy-1",
                            "commonName": "example.com",
                            "dnsNames": ["example.com", "www.example.com"],
                            "notAfter": "2026-01-01T00:00:00Z",
                            "fingerprintSha256": "AB:CD:EF",
                        },
                        {"id": "8"},
                    ]
                },
            )
        )

        stored = ResultAssertions.assert_success(client.list_certificates(ctx, PageRequest(2, 50)))

        first, second = stored
        assert first.cert_id == "7"
        assert first.dns_names == ("example.com", "www.example.com")
        assert first.not_after == datetime(2026, 1, 1, tzinfo=UTC)
        assert first.fingerprint_sha256 == bytes.fromhex("abcdef")
        assert second.cert_id == "8"
        assert second.fingerprint_sha256 is None
        request = route.calls.last.request
        assert request.url.params["page"] == "2"
        assert request.url.params["size"] == "50"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"

    @respx.mock
    def test_non_hex_fingerprint_is_left_undecided(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        """
        GIVEN a platform reporting a base64 fingerprint
        WHEN list_certificates is called
        THEN the page still loads and the fingerprint is treated as unknown.
        """
        respx.get(f"{BASE_URL}/certificates").mock(
            return_value=httpx.Response(200, json={"items": [{"id": 7, "fingerprintSha256": "q83v7w=="}]})
        )

        stored = ResultAssertions.assert_success(client.list_certificates(ctx, PageRequest(1, 10)))

        assert stored[0].cert_id == "7"
        assert stored[0].fingerprint_sha256 is None

    @respx.mock
    def test_malformed_payload_is_upstream_error(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        respx.get(f"{BASE_URL}/certificates").mock(return_value=httpx.Response(200, text="<html>"))

        result = client.list_certificates(ctx, PageRequest(1, 10))

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure_message_contains(result, "invalid response")
        ResultAssertions.assert_failure_details(result, operation="list_certificates")


class TestFetchCertificate:
    @respx.mock
    def test_returns_pem(self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str) -> None:
        respx.get(f"{BASE_URL}/certificates/7").mock(
            return_value=httpx.Response(200, json={"id": 7, "certificate": cert_pem})
        )

        assert ResultAssertions.assert_success(client.fetch_certificate_pem(ctx, "7")) == cert_pem

    @respx.mock
    def test_404_is_not_found(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        """
        GIVEN the platform answers 404 {"message": "no such certificate"}
        WHEN fetch_certificate_pem is called
        THEN NOT_FOUND annotated with the operation.
        """
        respx.get(f"{BASE_URL}/certificates/7").mock(
            return_value=httpx.Response(404, json={"message": "no such certificate"})
        )

        result = client.fetch_certificate_pem(ctx, "7")

        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        ResultAssertions.assert_failure_message_equals(
            result, "failed to execute request 'get_certificate': HTTP 404: no such certificate"
        )
        ResultAssertions.assert_failure_details(result, operation="get_certificate")


class TestCreateCertificate:
    @respx.mock
    def test_sends_leaf_chain_and_key(
        self, client: HttpPlatformClient, ctx: DeployContext, private_key_pem: str
    ) -> None:
        """
        GIVEN a leaf + intermediate bundle
        WHEN create_certificate is called
        THEN the body splits leaf and chain, and extra response fields become extended data.
        """
        chain, intermediate = make_chain_pem(("leaf.example.com",))
        route = respx.post(f"{BASE_URL}/certificates").mock(
            return_value=httpx.Response(201, json={"id": 42, "region": "eu-1"})
        )

        upload = ResultAssertions.assert_success(
            client.create_certificate(ctx, "certdeploy-1", chain, private_key_pem)
        )

        assert upload == UploadResult(cert_id="42", cert_name="certdeploy-1", extended_data={"region": "eu-1"})
        body = _body(route)
        assert body["name"] == "certdeploy-1"
        assert body["certificate"].count("BEGIN CERTIFICATE") == 1
        assert body["chain"].strip() == intermediate.strip()
        assert body["privateKey"] == private_key_pem

    @respx.mock
    def test_duplicate_message_is_kept_verbatim(
        self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str, private_key_pem: str
    ) -> None:
        respx.post(f"{BASE_URL}/certificates").mock(
            return_value=httpx.Response(400, json={"message": "certificate already exists: 12345"})
        )

        result = client.create_certificate(ctx, "n", cert_pem, private_key_pem)

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure_message_equals(
            result,
            "failed to execute request 'create_certificate': HTTP 400: certificate already exists: 12345",
        )

    def test_malformed_pem_never_reaches_platform(
        self, client: HttpPlatformClient, ctx: DeployContext, private_key_pem: str
    ) -> None:
        with respx.mock(assert_all_called=False) as router:
            route = router.post(f"{BASE_URL}/certificates")

            result = client.create_certificate(ctx, "n", "garbage", private_key_pem)

            ResultAssertions.assert_failure(result, ErrorCode.PARSE_ERROR)
            assert not route.called


class TestReplaceCertificate:
    @respx.mock
    def test_put_to_certificate_id(
        self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str, private_key_pem: str
    ) -> None:
        route = respx.put(f"{BASE_URL}/certificates/7").mock(return_value=httpx.Response(200, json={}))

        result = client.replace_certificate(ctx, "7", cert_pem, private_key_pem)

        assert ResultAssertions.assert_success(result).cert_id == "7"
        assert _body(route)["privateKey"] == private_key_pem


class TestTransportErrors:
    """Network failures and cancellation never raise."""

    @respx.mock
    def test_server_error_text_body(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        respx.get(f"{BASE_URL}/domains").mock(return_value=httpx.Response(503, text="maintenance"))

        result = client.list_domains(ctx, PageRequest(1, 10))

        ResultAssertions.assert_failure_message_equals(
            result, "failed to execute request 'list_domains': HTTP 503: maintenance"
        )

    @respx.mock
    def test_network_error_is_retried_then_reported(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        route = respx.get(f"{BASE_URL}/domains").mock(side_effect=httpx.ConnectError("connection refused"))

        result = client.list_domains(ctx, PageRequest(1, 10))

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure_message_contains(result, "connection refused")
        assert route.call_count == 3

    @respx.mock
    def test_cancel_during_retry_stops_retrying(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        """
        GIVEN a request that times out while the deploy is being cancelled
        WHEN list_domains runs
        THEN no further attempt is sent and the result is CANCELLED, not an upstream error.
        """

        def cancel_and_time_out(request: httpx.Request) -> httpx.Response:
            ctx.cancel()
            raise httpx.ConnectTimeout("timed out", request=request)

        route = respx.get(f"{BASE_URL}/domains").mock(side_effect=cancel_and_time_out)

        result = client.list_domains(ctx, PageRequest(1, 10))

        ResultAssertions.assert_failure(result, ErrorCode.CANCELLED)
        ResultAssertions.assert_failure_details(result, reason="cancelled")
        assert route.call_count == 1

    @respx.mock
    def test_deadline_passed_during_retry(self, client: HttpPlatformClient) -> None:
        now = [100.0]
        ctx = DeployContext.with_timeout(10, clock=lambda: now[0])

        def expire_and_time_out(request: httpx.Request) -> httpx.Response:
            now[0] += 20
            raise httpx.ReadTimeout("timed out", request=request)

        route = respx.get(f"{BASE_URL}/domains").mock(side_effect=expire_and_time_out)

        result = client.list_domains(ctx, PageRequest(1, 10))

        ResultAssertions.assert_failure(result, ErrorCode.CANCELLED)
        ResultAssertions.assert_failure_details(result, reason="deadline_exceeded")
        assert route.call_count == 1

    def test_cancelled_context_sends_nothing(self, client: HttpPlatformClient) -> None:
        ctx = DeployContext.background()
        ctx.cancel()

        with respx.mock(assert_all_called=False) as router:
            route = router.get(f"{BASE_URL}/domains")

            result = client.list_domains(ctx, PageRequest(1, 10))

            ResultAssertions.assert_failure(result, ErrorCode.CANCELLED)
            assert not route.called


# ═══════════════════════════════════════════════════════════════════════
# DomainInventory
# ═══════════════════════════════════════════════════════════════════════


class TestListDomains:
    @respx.mock
    def test_maps_domains_and_status(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        respx.get(f"{BASE_URL}/domains").mock(
            return_value=httpx.Response(
                200,
                json={"items": [{"domain": "a.example.com", "status": "online"}, {"domain": "b.example.com"}]},
            )
        )

        entries = ResultAssertions.assert_success(client.list_domains(ctx, PageRequest(1, 10)))

        assert [(e.domain, e.status) for e in entries] == [
            ("a.example.com", "online"),
            ("b.example.com", None),
        ]


# ═══════════════════════════════════════════════════════════════════════
# TargetBinder
# ═══════════════════════════════════════════════════════════════════════


UPLOAD = UploadResult(cert_id="42")


def _cache(cert_pem: str) -> UploadedCertificateCache:
    cache = UploadedCertificateCache()
    cache.put(UPLOAD.cert_id, cert_pem)
    return cache


class TestBind:
    @respx.mock
    def test_binds_unbound_domain(self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str) -> None:
        respx.get(f"{BASE_URL}/domains/a.example.com/certificates").mock(
            return_value=httpx.Response(200, json={"items": []})
        )
        put = respx.put(f"{BASE_URL}/domains/a.example.com/certificates/42").mock(
            return_value=httpx.Response(204)
        )
        target = DeployTarget.for_domain("a.example.com")

        assert ResultAssertions.assert_success(client.bind(ctx, target, UPLOAD, _cache(cert_pem))) == target
        assert put.called

    @respx.mock
    def test_resource_target_path(self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str) -> None:
        respx.get(f"{BASE_URL}/resources/lb-1/certificates").mock(
            return_value=httpx.Response(200, json={"items": []})
        )
        put = respx.put(f"{BASE_URL}/resources/lb-1/certificates/42").mock(return_value=httpx.Response(204))

        ResultAssertions.assert_success(
            client.bind(ctx, DeployTarget.for_resource("lb-1"), UPLOAD, _cache(cert_pem))
        )
        assert put.called

    def test_already_bound_is_left_alone(
        self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str
    ) -> None:
        """
        GIVEN the target already lists certificate 42
        WHEN bind is called with certificate 42
        THEN no write is sent.
        """
        with respx.mock(assert_all_called=False) as router:
            router.get(f"{BASE_URL}/domains/a.example.com/certificates").mock(
                return_value=httpx.Response(200, json={"items": [{"certificateId": 42}]})
            )
            put = router.put(f"{BASE_URL}/domains/a.example.com/certificates/42")

            result = client.bind(ctx, DeployTarget.for_domain("a.example.com"), UPLOAD, _cache(cert_pem))

            ResultAssertions.assert_success(result)
            assert not put.called

    def test_events_go_to_swapped_logger(
        self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str
    ) -> None:
        recorder = RecordingLogger()
        client.set_logger(recorder)

        with respx.mock(assert_all_called=False) as router:
            router.get(f"{BASE_URL}/domains/a.example.com/certificates").mock(
                return_value=httpx.Response(200, json={"items": [{"certificateId": 42}]})
            )

            client.bind(ctx, DeployTarget.for_domain("a.example.com"), UPLOAD, _cache(cert_pem))

        assert recorder.events == ["platform.already_bound"]

    @respx.mock
    def test_bind_failure_names_operation(
        self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str
    ) -> None:
        respx.get(f"{BASE_URL}/domains/a.example.com/certificates").mock(
            return_value=httpx.Response(200, json={"items": []})
        )
        respx.put(f"{BASE_URL}/domains/a.example.com/certificates/42").mock(
            return_value=httpx.Response(409, json={"message": "domain is locked"})
        )

        result = client.bind(ctx, DeployTarget.for_domain("a.example.com"), UPLOAD, _cache(cert_pem))

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure_details(result, operation="bind_certificate")


class TestPruneStaleBindings:
    """
    GIVEN a target with three other bindings: expired, same names, unrelated
    WHEN the new certificate is bound
    THEN the expired and same-name bindings are removed and the unrelated one kept.
    """

    @respx.mock
    def test_prunes_expired_and_superseded(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        now = datetime.now(UTC)
        new_pem = make_certificate_pem(("a.example.com",))
        expired_pem = make_certificate_pem(
            ("old.example.com",), not_before=now - timedelta(days=100), not_after=now - timedelta(days=10)
        )
        superseded_pem = make_certificate_pem(("A.example.com",))
        unrelated_pem = make_certificate_pem(("a.example.com", "b.example.com"))
        base = f"{BASE_URL}/domains/a.example.com/certificates"

        respx.get(base).mock(
            return_value=httpx.Response(
                200,
                json={"items": [{"certificateId": c} for c in ("expired", "superseded", "unrelated")]},
            )
        )
        respx.put(f"{base}/42").mock(return_value=httpx.Response(204))
        for cert_id, pem in [
            ("expired", expired_pem),
            ("superseded", superseded_pem),
            ("unrelated", unrelated_pem),
        ]:
            respx.get(f"{BASE_URL}/certificates/{cert_id}").mock(
                return_value=httpx.Response(200, json={"id": cert_id, "certificate": pem})
            )
        deleted_expired = respx.delete(f"{base}/expired").mock(return_value=httpx.Response(204))
        deleted_superseded = respx.delete(f"{base}/superseded").mock(return_value=httpx.Response(204))
        cache = _cache(new_pem)

        result = client.bind(ctx, DeployTarget.for_domain("a.example.com"), UPLOAD, cache)

        ResultAssertions.assert_success(result)
        assert deleted_expired.called
        assert deleted_superseded.called
        assert "unrelated" in cache

    @respx.mock
    def test_vanished_binding_is_not_stale(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        base = f"{BASE_URL}/domains/a.example.com/certificates"
        respx.get(base).mock(return_value=httpx.Response(200, json={"items": [{"certificateId": "gone"}]}))
        respx.put(f"{base}/42").mock(return_value=httpx.Response(204))
        respx.get(f"{BASE_URL}/certificates/gone").mock(return_value=httpx.Response(404))

        result = client.bind(
            ctx, DeployTarget.for_domain("a.example.com"), UPLOAD, _cache(make_certificate_pem(("a.example.com",)))
        )

        ResultAssertions.assert_success(result)

    @respx.mock
    def test_missing_upload_in_cache_is_technical_error(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        base = f"{BASE_URL}/domains/a.example.com/certificates"
        respx.get(base).mock(return_value=httpx.Response(200, json={"items": [{"certificateId": "old"}]}))
        respx.put(f"{base}/42").mock(return_value=httpx.Response(204))

        result = client.bind(ctx, DeployTarget.for_domain("a.example.com"), UPLOAD, UploadedCertificateCache())

        ResultAssertions.assert_failure(result, ErrorCode.TECHNICAL_ERROR)


# ═══════════════════════════════════════════════════════════════════════
# DeploymentJobClient
# ═══════════════════════════════════════════════════════════════════════


REQUEST = JobRequest(old_cert_id="old-1", resource_products=("cdn", "clb"), resource_regions=("ap-1",))


class TestDeploymentJobs:
    @respx.mock
    def test_submit_rebind(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        """
        GIVEN products cdn and clb with region ap-1
        WHEN a rebind job is submitted
        THEN only clb carries regions and the numeric job id is stringified.
        """
        route = respx.post(f"{BASE_URL}/deployments").mock(
            return_value=httpx.Response(200, json={"jobId": 99})
        )

        ticket = ResultAssertions.assert_success(client.submit_rebind(ctx, REQUEST, "42"))

        assert ticket.job_id == "99"
        assert _body(route) == {
            "oldCertificateId": "old-1",
            "newCertificateId": "42",
            "resources": [{"product": "cdn"}, {"product": "clb", "regions": ["ap-1"]}],
        }

    @respx.mock
    def test_ticket_without_job_id_is_not_accepted(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        respx.post(f"{BASE_URL}/deployments").mock(return_value=httpx.Response(200, json={}))

        ticket = ResultAssertions.assert_success(client.submit_rebind(ctx, REQUEST, "42"))

        assert not ticket.accepted

    @respx.mock
    def test_rebind_status_returns_every_record(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        respx.get(f"{BASE_URL}/deployments/99").mock(
            return_value=httpx.Response(
                200,
                json={"records": [{"pending": 1, "total": 1}, {"succeeded": 2, "failed": 1, "total": 3}]},
            )
        )

        shards = ResultAssertions.assert_success(client.rebind_status(ctx, "99"))

        assert shards == [JobProgress(pending=1, total=1), JobProgress(succeeded=2, failed=1, total=3)]

    @respx.mock
    def test_status_without_records_is_upstream_error(
        self, client: HttpPlatformClient, ctx: DeployContext
    ) -> None:
        """
        GIVEN a status payload that carries no records field
        WHEN rebind_status is called
        THEN the payload is rejected instead of read as an empty, finished job.
        """
        respx.get(f"{BASE_URL}/deployments/99").mock(return_value=httpx.Response(200, json={"jobId": "99"}))

        result = client.rebind_status(ctx, "99")

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure_message_contains(result, "no records")

    @respx.mock
    def test_empty_records_are_returned_as_is(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        respx.get(f"{BASE_URL}/deployments/99").mock(return_value=httpx.Response(200, json={"records": []}))

        assert ResultAssertions.assert_success(client.rebind_status(ctx, "99")) == []

    @respx.mock
    def test_negative_counter_is_upstream_error(self, client: HttpPlatformClient, ctx: DeployContext) -> None:
        respx.get(f"{BASE_URL}/deployments/99").mock(
            return_value=httpx.Response(200, json={"records": [{"pending": -1, "total": 0}]})
        )

        result = client.rebind_status(ctx, "99")

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure_message_contains(result, "invalid response")

    @respx.mock
    def test_replace_variant_endpoints(
        self, client: HttpPlatformClient, ctx: DeployContext, cert_pem: str, private_key_pem: str
    ) -> None:
        submit = respx.post(f"{BASE_URL}/deployments/replace").mock(
            return_value=httpx.Response(200, json={"jobId": "r-1"})
        )
        respx.get(f"{BASE_URL}/deployments/replace/r-1").mock(
            return_value=httpx.Response(200, json={"records": [{"succeeded": 1, "total": 1}]})
        )

        ticket = ResultAssertions.assert_success(client.submit_replace(ctx, REQUEST, cert_pem, private_key_pem))
        shards = ResultAssertions.assert_success(client.replace_status(ctx, "r-1"))

        assert ticket.job_id == "r-1"
        assert shards == [JobProgress(succeeded=1, total=1)]
        body = _body(submit)
        assert body["oldCertificateId"] == "old-1"
        assert body["privateKey"] == private_key_pem
        assert body["chain"] == ""
