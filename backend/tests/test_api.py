"""End-to-end tests for the challenge / verify / protected flow."""

import time

import pytest

from powshield.config import Settings
from powshield.main import app
from powshield.services.pow_service import pow_digest, solve
from powshield.services.ttl_store import MemoryTTLStore
from powshield.state import build_shield
from tests.test_utils import find_unsolved, full_signals


def request_challenge(client, identity: str) -> dict:
    response = client.post("/challenge", json={"identity": identity})
    assert response.status_code == 200
    return response.json()


def solve_and_submit(client, identity: str, challenge: dict, signals: dict | None = None):
    counter = solve(identity, challenge["nonce"], challenge["difficulty"])
    body = {
        "identity": identity,
        "nonce": challenge["nonce"],
        "counter": counter,
        "hash": pow_digest(identity, challenge["nonce"], counter),
        "signals": signals if signals is not None else full_signals(),
    }
    return client.post("/verify", json=body), body


def obtain_token(client, identity: str) -> dict:
    challenge = request_challenge(client, identity)
    response, _ = solve_and_submit(client, identity, challenge)
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health(self, client, shield):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "secret_version": 1}


class TestChallenge:
    def test_post_challenge(self, client):
        data = request_challenge(client, "abc")

        assert data["difficulty"] == 3
        assert data["secret_version"] == 1
        assert data["algorithm"] == "sha256"
        assert len(data["nonce"]) == 32
        assert "expires_at" in data

    def test_get_challenge(self, client):
        response = client.get("/challenge", params={"identity": "abc"})
        assert response.status_code == 200
        assert response.json()["difficulty"] == 3

    def test_versioned_prefix(self, client):
        response = client.post("/api/v1/challenge", json={"identity": "abc"})
        assert response.status_code == 200

    def test_missing_identity_post(self, client):
        response = client.post("/challenge", json={})
        assert response.status_code == 400
        assert response.json() == {"detail": "MALFORMED"}

    def test_missing_identity_get(self, client):
        response = client.get("/challenge")
        assert response.status_code == 400
        assert response.json() == {"detail": "MALFORMED"}

    def test_empty_identity(self, client):
        response = client.post("/challenge", json={"identity": ""})
        assert response.status_code == 400

    def test_difficulty_never_leaks_score(self, client):
        data = request_challenge(client, "abc")
        assert "score" not in data


class TestVerify:
    def test_concrete_scenario(self, client, test_settings):
        """Fresh identity solves at base difficulty, gets a token, replay is refused."""
        challenge = request_challenge(client, "abc")
        assert challenge["difficulty"] == 3

        response, body = solve_and_submit(client, "abc", challenge)

        assert response.status_code == 200
        data = response.json()
        payload = data["payload"]
        assert payload["identity"] == "abc"
        assert payload["v"] == 1
        assert payload["exp"] == payload["iat"] + test_settings.token_ttl_seconds * 1000
        assert len(data["signature"]) == 64

        replay = client.post("/verify", json=body)
        assert replay.status_code == 403
        assert replay.json() == {"detail": "REPLAY"}

    def test_verify_without_signals(self, client):
        challenge = request_challenge(client, "abc")
        counter = solve("abc", challenge["nonce"], challenge["difficulty"])

        response = client.post(
            "/verify",
            json={
                "identity": "abc",
                "nonce": challenge["nonce"],
                "counter": counter,
                "hash": pow_digest("abc", challenge["nonce"], counter),
            },
        )

        # Missing telemetry costs 0.4, below the throttle threshold
        assert response.status_code == 200
        assert "signature" in response.json()

    def test_unknown_challenge(self, client):
        response = client.post(
            "/verify",
            json={"identity": "abc", "nonce": "a" * 32, "counter": 1, "hash": "0" * 64},
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "INVALID_CHALLENGE"}

    def test_challenge_bound_to_identity(self, client):
        challenge = request_challenge(client, "abc")
        response, _ = solve_and_submit(client, "mallory", challenge)
        assert response.status_code == 403
        assert response.json() == {"detail": "INVALID_CHALLENGE"}

    def test_wrong_hash(self, client):
        challenge = request_challenge(client, "abc")
        counter = solve("abc", challenge["nonce"], challenge["difficulty"])

        response = client.post(
            "/verify",
            json={
                "identity": "abc",
                "nonce": challenge["nonce"],
                "counter": counter + 1,
                "hash": pow_digest("abc", challenge["nonce"], counter),
                "signals": full_signals(),
            },
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "INVALID_POW"}

    def test_insufficient_work(self, client):
        challenge = request_challenge(client, "abc")
        counter, digest = find_unsolved("abc", challenge["nonce"], challenge["difficulty"])

        response = client.post(
            "/verify",
            json={"identity": "abc", "nonce": challenge["nonce"], "counter": counter, "hash": digest},
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "DIFFICULTY_FAIL"}

    def test_expired_challenge(self, client, shield):
        challenge = shield.issuer.issue("abc", now=time.time() - 90, client_ip="testclient")
        counter = solve("abc", challenge.nonce, challenge.difficulty)

        response = client.post(
            "/verify",
            json={
                "identity": "abc",
                "nonce": challenge.nonce,
                "counter": counter,
                "hash": pow_digest("abc", challenge.nonce, counter),
            },
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "EXPIRED"}

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"identity": "abc"},
            {"identity": "abc", "nonce": "a" * 32, "counter": -1, "hash": "0" * 64},
            {"identity": "abc", "nonce": "a" * 32, "counter": 1, "hash": "xyz"},
            {"identity": "abc", "nonce": "not-hex", "counter": 1, "hash": "0" * 64},
            {"identity": "abc", "nonce": "a" * 32, "counter": "one", "hash": "0" * 64},
        ],
    )
    def test_malformed_request(self, client, shield, body):
        response = client.post("/verify", json=body)
        assert response.status_code == 400
        assert response.json() == {"detail": "MALFORMED"}
        assert "abc" not in shield.ledger

    def test_successful_solve_discounts_suspicion(self, client, shield):
        challenge = request_challenge(client, "abc")
        shield.ledger.get_or_create("abc", time.time()).score = 0.6

        response, _ = solve_and_submit(client, "abc", challenge)

        assert response.status_code == 200
        assert shield.ledger.get_or_create("abc", time.time()).score == pytest.approx(0.3, abs=1e-3)

    def test_burst_escalation(self, client, shield):
        """31 challenges inside the burst window end in a shadow-throttled verify."""
        for _ in range(30):
            request_challenge(client, "burst")
        challenge = request_challenge(client, "burst")

        response, _ = solve_and_submit(client, "burst", challenge)

        assert response.status_code == 200
        assert response.json() == {"status": "shadow_throttled"}
        state = shield.ledger.get_or_create("burst", time.time())
        assert state.score > shield.settings.shadow_throttle_threshold

    def test_shadow_throttle_still_consumes_nonce(self, client, shield):
        challenge = request_challenge(client, "sus")
        shield.ledger.get_or_create("sus", time.time()).score = 0.9

        response, body = solve_and_submit(client, "sus", challenge)
        assert response.json() == {"status": "shadow_throttled"}

        replay = client.post("/verify", json=body)
        assert replay.json() == {"detail": "REPLAY"}

    def test_high_risk_denied(self, client):
        settings = Settings(
            _env_file=None, pow_base_difficulty=1, pow_difficulty_cap=0, deny_threshold=5.0
        )
        strict = build_shield(settings, store=MemoryTTLStore())
        app.state.shield = strict

        challenge = request_challenge(client, "bot")
        strict.ledger.get_or_create("bot", time.time()).score = 6.0

        response, _ = solve_and_submit(client, "bot", challenge)

        assert response.status_code == 403
        assert response.json() == {"detail": "HIGH_RISK"}

    def test_headless_automation_is_throttled(self, client):
        challenge = request_challenge(client, "headless")
        signals = full_signals(ua="Mozilla/5.0 HeadlessChrome/126.0", webdriver=True)

        response, _ = solve_and_submit(client, "headless", challenge, signals=signals)

        assert response.json() == {"status": "shadow_throttled"}

    def test_collector_payload_shape_is_scored(self, client, shield):
        challenge = request_challenge(client, "collector")
        signals = {
            "ua": "Mozilla/5.0 (X11; Linux x86_64) Chrome/126.0",
            "cpu": 8,
            "memory": 8,
            "engineVersion": "3.1.0",
            "timingDrift": -1.0,
            "workerIntegrity": False,
            "behavioralEntropy": 5.0,
            "flags": ["negative_delta", "timer_anomaly", "low_behavioral_entropy", "no_plugins"],
        }

        response, _ = solve_and_submit(client, "collector", challenge, signals=signals)

        assert response.json() == {"status": "shadow_throttled"}
        score = shield.ledger.get_or_create("collector", time.time()).score
        assert score == pytest.approx(0.2 + 0.2 + 0.3 + 0.2, abs=1e-3)

    def test_webdriver_flag_alone_is_throttled(self, client):
        challenge = request_challenge(client, "driven")
        signals = full_signals(flags=["webdriver", "no_plugins"])

        response, _ = solve_and_submit(client, "driven", challenge, signals=signals)

        assert response.json() == {"status": "shadow_throttled"}


class TestProtected:
    def test_valid_token(self, client):
        token = obtain_token(client, "abc")

        response = client.post("/protected", json={**token, "identity": "abc"})

        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_tampered_signature(self, client):
        token = obtain_token(client, "abc")
        signature = token["signature"]
        token["signature"] = signature[:-1] + ("0" if signature[-1] != "0" else "1")

        response = client.post("/protected", json={**token, "identity": "abc"})

        assert response.status_code == 403
        assert response.json() == {"detail": "BAD_SIGNATURE"}

    def test_identity_mismatch(self, client):
        token = obtain_token(client, "abc")

        response = client.post("/protected", json={**token, "identity": "someone-else"})

        assert response.status_code == 403
        assert response.json() == {"detail": "IDENTITY_MISMATCH"}

    def test_expired_token(self, client, shield):
        token = shield.authority.issue_token("abc", time.time() - 120, client_ip="testclient")

        response = client.post(
            "/protected",
            json={"payload": token.payload, "signature": token.signature, "identity": "abc"},
        )

        assert response.status_code == 403
        assert response.json() == {"detail": "EXPIRED"}

    def test_rotation_invalidates_token(self, client, shield):
        token = obtain_token(client, "abc")
        assert token["payload"]["v"] == 1

        shield.authority.rotate()

        response = client.post("/protected", json={**token, "identity": "abc"})
        assert response.status_code == 403
        assert response.json() == {"detail": "BAD_SIGNATURE"}
        assert client.get("/health").json()["secret_version"] == 2

    def test_missing_token(self, client):
        response = client.post("/protected", json={"identity": "abc"})
        assert response.status_code == 400
        assert response.json() == {"detail": "MALFORMED"}

    def test_requester_identity_is_required(self, client):
        token = obtain_token(client, "abc")

        response = client.post("/protected", json=token)

        assert response.status_code == 400
        assert response.json() == {"detail": "MALFORMED"}
