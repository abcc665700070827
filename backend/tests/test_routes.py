"""
Image cache route tests

Run:
    cd backend
    pytest tests/test_routes.py -v
"""

import sys
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from image_optimizer.app import create_app
from image_optimizer.cache_key import to_url
from image_optimizer.config import ImageOptimizerConfig
from image_optimizer.models import Blur, Resize, TransformRequest
from image_optimizer.routes_fastapi import CACHE_CONTROL, create_router

RESIZE = TransformRequest("cat.png", Resize(100, 100, 75))
BLUR = TransformRequest("cat.png", Blur(20, 20, 500, 500, 15))


@pytest.fixture
def client(store):
    app = FastAPI()
    app.include_router(create_router(store))
    with TestClient(app) as test_client:
        yield test_client


# ============================================
# GET /cache/image
# ============================================

class TestGetCachedImage:
    """Serving derivatives"""

    def test_resize(self, client):
        response = client.get(to_url(RESIZE))

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/webp"
        assert response.headers["cache-control"] == CACHE_CONTROL
        assert response.content[:4] == b"RIFF"
        assert response.content[8:12] == b"WEBP"

    def test_miss_then_hit(self, client):
        first = client.get(to_url(RESIZE))
        second = client.get(to_url(RESIZE))

        assert first.headers["x-cache"] == "MISS"
        assert second.headers["x-cache"] == "HIT"
        assert first.content == second.content

    def test_blur(self, client, store):
        response = client.get(to_url(BLUR))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert 'viewBox="0 0 500 500"' in response.text
        # Placeholders served on demand are also kept in memory
        assert store.lookup_memory(BLUR) == response.text

    def test_head(self, client):
        response = client.head(to_url(RESIZE))

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/webp"
        assert response.headers["x-cache"] == "MISS"
        assert response.content == b""
        assert client.get(to_url(RESIZE)).headers["x-cache"] == "HIT"

    def test_head_invalid_key(self, client):
        assert client.head("/cache/image?op=zzz").status_code == 404

    def test_trailing_slash_route(self, client):
        response = client.get("/cache/image/?src=cat.png&op=r&w=10&h=10&q=50")
        assert response.status_code == 200

    @pytest.mark.parametrize("url", [
        "/cache/image?op=zzz",
        "/cache/image",
        "/cache/image?src=cat.png&op=r&w=10",
        "/cache/image?src=../secret.png&op=r&w=10&h=10&q=50",
    ])
    def test_undecodable_key_is_not_found(self, client, url):
        response = client.get(url)

        assert response.status_code == 404
        assert response.text == "Invalid Image."

    def test_missing_source_is_server_error(self, client):
        response = client.get(to_url(TransformRequest("missing.png", Resize(10, 10, 75))))

        assert response.status_code == 500
        assert response.text == "Error creating image."

    def test_corrupt_source_is_server_error(self, client):
        response = client.get(to_url(TransformRequest("broken.png", Blur())))
        assert response.status_code == 500

    def test_zero_width_is_server_error(self, client):
        response = client.get(to_url(TransformRequest("cat.png", Resize(0, 10, 75))))
        assert response.status_code == 500


# ============================================
# Stats / health
# ============================================

class TestOperationalEndpoints:
    """Stats and health"""

    def test_stats(self, client):
        client.get(to_url(RESIZE))
        response = client.get("/cache/image/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["created"] == 1
        assert data["parallelism"] == 2

    def test_health(self, client):
        response = client.get("/cache/image/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# ============================================
# create_app
# ============================================

class TestCreateApp:
    """Application factory and startup precache"""

    def test_precache_on_startup(self, site_root):
        class Host:
            def enumerate_routes(self):
                return ["/"]

            def render_once(self, path, collector):
                collector.add(RESIZE)
                collector.add(BLUR)

        config = ImageOptimizerConfig(root=str(site_root), parallelism=2)
        app = create_app(config, host=Host())

        with TestClient(app) as client:
            store = app.state.image_store
            assert store.lookup_memory(BLUR) is not None
            assert client.get(to_url(RESIZE)).headers["x-cache"] == "HIT"

    def test_precache_disabled(self, site_root):
        class Host:
            def enumerate_routes(self):
                raise AssertionError("should not render")

            def render_once(self, path, collector):
                raise AssertionError("should not render")

        config = ImageOptimizerConfig(root=str(site_root), precache=False)

        with TestClient(create_app(config, host=Host())) as client:
            assert client.get(to_url(RESIZE)).status_code == 200

    def test_loads_existing_placeholders(self, site_root):
        config = ImageOptimizerConfig(root=str(site_root))
        with TestClient(create_app(config)) as client:
            client.get(to_url(BLUR))

        app = create_app(config)
        with TestClient(app):
            assert app.state.image_store.lookup_memory(BLUR) is not None

    def test_custom_route(self, site_root):
        config = ImageOptimizerConfig(root=str(site_root), route="/img")

        with TestClient(create_app(config)) as client:
            assert client.get(to_url(RESIZE, prefix="/img")).status_code == 200
            assert client.get(to_url(RESIZE)).status_code == 404

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("IMAGE_OPTIMIZER_ROOT", "/srv/site")
        monkeypatch.setenv("IMAGE_OPTIMIZER_PARALLELISM", "8")
        monkeypatch.setenv("IMAGE_OPTIMIZER_PRECACHE", "off")

        config = ImageOptimizerConfig.from_env()

        assert config.root == "/srv/site"
        assert config.parallelism == 8
        assert config.route == "/cache/image"
        assert config.precache is False
