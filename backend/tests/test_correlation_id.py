"""Tests for correlation ID header on all responses."""


def test_correlation_id_on_success(client):
    """Test that correlation ID is included on successful responses."""
    response = client.get("/health")
    assert response.status_code == 200
    assert "X-Correlation-ID" in response.headers
    assert len(response.headers["X-Correlation-ID"]) == 8  # 4 bytes as hex


def test_correlation_id_on_rejection(client):
    """Test that protocol rejections (403) carry the correlation ID."""
    response = client.post(
        "/verify",
        json={"identity": "abc", "nonce": "a" * 32, "counter": 1, "hash": "0" * 64},
    )
    assert response.status_code == 403
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_validation_error(client):
    """Test that correlation ID is included on MALFORMED (400) responses."""
    response = client.post("/challenge", json={})
    assert response.status_code == 400
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_404(client):
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert "X-Correlation-ID" in response.headers


def test_correlation_ids_unique_across_requests(client):
    """Test that each request gets a unique correlation ID."""
    response1 = client.get("/health")
    response2 = client.get("/health")

    corr_id_1 = response1.headers.get("X-Correlation-ID")
    corr_id_2 = response2.headers.get("X-Correlation-ID")

    assert corr_id_1 != corr_id_2, "Correlation IDs should be unique across requests"
