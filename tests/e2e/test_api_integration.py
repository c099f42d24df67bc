"""
End-to-end tests for the Hello World API over real HTTP.
"""

import subprocess

import pytest
import requests

from server_process import free_port, start_server, wait_until_serving


def test_hello_world(api_url):
    """Test that service returns Hello world"""
    response = requests.get(f"{api_url}/hello", timeout=1)
    assert response.status_code == 200
    assert response.content == b"Hello world"
    assert response.headers["content-type"] == "text/plain; charset=utf-8"


def test_query_string_is_ignored(api_url):
    response = requests.get(f"{api_url}/hello", params={"x": "1"}, timeout=1)
    assert response.status_code == 200
    assert response.text == "Hello world"


def test_unknown_path_returns_json_404(api_url):
    response = requests.get(f"{api_url}/nonexistent", timeout=1)
    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"


def test_post_hello_is_rejected(api_url):
    response = requests.post(f"{api_url}/hello", timeout=1)
    assert response.status_code == 405
    assert "GET" in response.headers["allow"]


def test_second_instance_on_same_port_exits(live_server, api_url, tmp_path):
    """A second process on a taken port fails fast; the first keeps serving."""
    if live_server["port"] is None:
        pytest.skip("port conflict needs a locally started server")

    second = start_server(live_server["port"], tmp_path)
    try:
        output, _ = second.communicate(timeout=15)
    except subprocess.TimeoutExpired:
        second.kill()
        raise

    assert second.returncode == 1
    assert "EADDRINUSE" in output
    assert str(live_server["port"]) in output

    response = requests.get(f"{api_url}/hello", timeout=1)
    assert response.status_code == 200
    assert response.text == "Hello world"


def test_sigterm_shuts_down_cleanly(tmp_path):
    port = free_port()
    process = start_server(port, tmp_path)
    try:
        wait_until_serving(f"http://127.0.0.1:{port}", process)
        process.terminate()
        process.wait(timeout=15)
    finally:
        if process.poll() is None:
            process.kill()

    assert process.returncode == 0
