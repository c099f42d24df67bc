"""Dagger CI module for the Hello World API.

Runs the unit and end-to-end suites in containers and checks a running
service over the network.
"""

import asyncio

import dagger as dg
from dagger import dag, function, object_type

SERVICE_PORT = 3000
PROJECT_DIR = "/app"


@object_type
class HelloApiCi:
    """CI pipeline for the Hello World API using uv.

    This module provides:
    - Unit tests in isolated containers
    - Unit tests across multiple Python versions
    - The API as a Dagger service
    - End-to-end tests against the bound service
    """

    @function
    def test_container(
        self, source: dg.Directory, python_version: str = "3.12"
    ) -> dg.Container:
        """Python image with the hello-api checkout mounted at /app.

        uv installs into the system interpreter and shares one download
        cache across every version in the matrix.

        Args:
            source: hello-api project root (pyproject.toml, src/, tests/)
            python_version: Interpreter tag of the uv image (default: 3.12)

        Returns:
            Container ready for `uv pip install`
        """
        image = f"ghcr.io/astral-sh/uv:python{python_version}-bookworm-slim"

        return (
            dag.container()
            .from_(image)
            .with_mounted_cache("/root/.cache/uv", dag.cache_volume("hello-api-uv"))
            .with_directory(PROJECT_DIR, source)
            .with_workdir(PROJECT_DIR)
            .with_env_variable("UV_SYSTEM_PYTHON", "1")
        )

    @function
    async def unit_test(
        self, source: dg.Directory, python_version: str = "3.12"
    ) -> str:
        """Run tests/unit, the in-process TestClient suite.

        Args:
            source: hello-api project root
            python_version: Interpreter tag of the uv image

        Returns:
            pytest's verbose report
        """
        return await self.run_test(source, "tests/unit", python_version)

    @function
    async def unit_test_matrix(
        self, source: dg.Directory, versions: str = "3.10,3.11,3.12"
    ) -> str:
        """Run tests/unit on every supported interpreter at once.

        A failing version is reported in the summary instead of aborting
        the others.

        Args:
            source: hello-api project root
            versions: Comma-separated interpreter tags (default covers
                requires-python)

        Returns:
            One PASSED/FAILED section per version
        """
        version_list = [v.strip() for v in versions.split(",") if v.strip()]

        async def test_version(version: str) -> str:
            try:
                result = await self.unit_test(source, version)
                return f"Python {version}: PASSED\n{result}"
            except dg.ExecError as e:
                return f"Python {version}: FAILED\n{e.stdout}\n{e.stderr}"

        results = await asyncio.gather(*[test_version(v) for v in version_list])

        output_lines = ["=== MULTI-VERSION TEST RESULTS ===", ""]
        for result in results:
            output_lines.extend([result, "=" * 50, ""])

        return "\n".join(output_lines)

    @function
    async def run_test(
        self, source: dg.Directory, path: str, python_version: str = "3.12"
    ) -> str:
        """Install hello-api with its test extra and run pytest on one path.

        Both the unit and end-to-end suites go through here.

        Args:
            source: hello-api project root
            path: Test file or directory relative to the project root
            python_version: Interpreter tag of the uv image

        Returns:
            pytest's verbose report
        """
        installed = self.test_container(source, python_version).with_exec(
            ["uv", "pip", "install", "-e", ".[test]"]
        )
        return await installed.with_exec(
            ["pytest", path, "-v", "--tb=short"]
        ).stdout()

    @function
    def api_service(
        self, source: dg.Directory, python_version: str = "3.12"
    ) -> dg.Service:
        """Run the API as a Dagger service on port 3000.

        The service listens on all interfaces so that containers bound to
        it can reach it by alias.

        Args:
            source: Directory containing the application code
            python_version: Python version to use (default: 3.12)

        Returns:
            A Dagger service running the API
        """
        return (
            self.test_container(source, python_version)
            .with_exec(["uv", "pip", "install", "-e", "."])
            .with_env_variable("HOST", "0.0.0.0")
            .with_env_variable("PORT", str(SERVICE_PORT))
            .with_env_variable("APP_ENV", "production")
            .with_exposed_port(SERVICE_PORT)
            .as_service(args=["python", "-m", "hello_api"])
        )

    @function
    async def test_api_service(
        self, source: dg.Directory, python_version: str = "3.12"
    ) -> str:
        """Send requests to the running service with curl.

        Checks GET /hello and an unknown path, printing status and body
        of each.

        Args:
            source: Directory containing the source code
            python_version: Python version to use

        Returns:
            Test results showing API responses
        """
        api_svc = self.api_service(source, python_version)

        test_client = (
            dag.container()
            .from_("alpine:latest")
            .with_exec(["apk", "add", "--no-cache", "curl"])
            .with_service_binding("api", api_svc)
        )

        curl = ["curl", "-s", "-w", "\n%{http_code}"]
        hello_response = await test_client.with_exec(
            [*curl, f"http://api:{SERVICE_PORT}/hello"]
        ).stdout()
        not_found_response = await test_client.with_exec(
            [*curl, f"http://api:{SERVICE_PORT}/nonexistent"]
        ).stdout()

        result_lines = [
            "=== API SERVICE TEST RESULTS ===",
            "",
            "Hello Endpoint (GET /hello):",
            hello_response,
            "",
            "Unknown Path (GET /nonexistent):",
            not_found_response,
        ]

        return "\n".join(result_lines)

    @function
    async def integration_test(
        self, source: dg.Directory, python_version: str = "3.12"
    ) -> str:
        """Run the end-to-end suite against a live API service.

        Args:
            source: Directory containing the source code
            python_version: Python version to use

        Returns:
            Integration test results from pytest
        """
        api_svc = self.api_service(source, python_version)

        return await (
            self.test_container(source, python_version)
            .with_service_binding("api", api_svc)
            .with_env_variable("API_BASE_URL", f"http://api:{SERVICE_PORT}")
            .with_exec(["uv", "pip", "install", "-e", ".[test]"])
            .with_exec(["pytest", "tests/e2e", "-v", "--tb=short"])
            .stdout()
        )
