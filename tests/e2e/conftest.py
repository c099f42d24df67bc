import os

import pytest

from server_process import free_port, start_server, wait_until_serving


@pytest.fixture(scope="session")
def live_server(tmp_path_factory):
    """Start the service on a free port unless API_BASE_URL points at one."""
    if "API_BASE_URL" in os.environ:
        yield {"url": os.environ["API_BASE_URL"].rstrip("/"), "port": None}
        return

    port = free_port()
    process = start_server(port, tmp_path_factory.mktemp("server"))
    url = f"http://127.0.0.1:{port}"
    try:
        wait_until_serving(url, process)
        yield {"url": url, "port": port}
    finally:
        process.terminate()
        process.wait(timeout=10)


@pytest.fixture
def api_url(live_server):
    """Get API URL from environment or the locally started server."""
    return live_server["url"]
