"""Shared fakes: external tools that operate on JSON number lists, and a fake CDS."""

import json
from pathlib import Path

import httpx
import pytest

from forager.conversions import ExternalToolFailed
from forager.services.cds import CDSConfig
from forager.services.cds.client import NO_DATA_MESSAGE

CDS_BASE = "https://cds.climate.copernicus.eu/api/v2"


def read_grid(path: Path) -> list[float]:
    return json.loads(Path(path).read_text())


def write_grid(path: Path, values: list[float]) -> None:
    Path(path).write_text(json.dumps(values))


class FakeTools:
    """Stand-in for wgrib/wgrib2/cdo/gdalwarp/gdal_translate.

    Grids are JSON lists. Extraction, clipping, time means and rasterizing copy
    their input; ``cdo -mulc`` multiplies and ``cdo sub`` subtracts cell by cell.
    Every tool writes its output to the last argument.
    """

    def __init__(self, fail: set[str] | None = None):
        self.calls: list[tuple[str, list[str]]] = []
        self.fail = fail or set()

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]

    async def __call__(self, command, args) -> bytes:
        argv = [str(arg) for arg in args]
        self.calls.append((command, argv))

        # Tools may be configured by full path; behave by executable name.
        tool = Path(command).name
        if command in self.fail or tool in self.fail:
            raise ExternalToolFailed(command, 1, f"{command}: simulated failure")

        output = Path(argv[-1])
        if tool == "cdo" and argv[0] == "sub":
            minuend, subtrahend = read_grid(argv[1]), read_grid(argv[2])
            write_grid(output, [a - b for a, b in zip(minuend, subtrahend)])
        elif tool == "cdo" and argv[0].startswith("-mulc,"):
            factor = float(argv[0].split(",", 1)[1])
            write_grid(output, [v * factor for v in read_grid(argv[1])])
        else:
            source = argv[0] if tool in ("wgrib", "wgrib2") else argv[-2]
            output.write_bytes(Path(source).read_bytes())
        return b""


class FakeCDS:
    """Routes CDS (and ingest webhook) requests for ``httpx.MockTransport``.

    Multi-year requests (normals) download ``normal_grid``; single-year
    requests download ``current_grid``.
    """

    def __init__(
        self,
        update_date: str = "2024-02-05",
        current_grid: list[float] | None = None,
        normal_grid: list[float] | None = None,
        no_data: bool = False,
        ingest_status: int = 200,
    ):
        self.update_date = update_date
        self.current_grid = current_grid or [300.0, 290.0]
        self.normal_grid = normal_grid or [280.0, 285.0]
        self.no_data = no_data
        self.ingest_status = ingest_status
        self.submissions: list[dict] = []
        self.ingest_requests: list[httpx.Request] = []
        self.update_checks = 0
        self._downloads: dict[str, bytes] = {}

    @property
    def normal_submissions(self) -> list[dict]:
        return [body for body in self.submissions if isinstance(body["year"], list)]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.url.host == "ingest.example":
            self.ingest_requests.append(request)
            return httpx.Response(self.ingest_status, json={"ok": self.ingest_status < 400})

        if path.startswith("/api/v2.ui/resources/"):
            self.update_checks += 1
            return httpx.Response(200, json={"update_date": self.update_date})

        if request.method == "POST" and path.startswith("/api/v2/resources/"):
            body = json.loads(request.content)
            self.submissions.append(body)
            if self.no_data:
                return httpx.Response(
                    400, json={"error": {"message": NO_DATA_MESSAGE.capitalize()}}
                )
            job_id = f"job-{len(self.submissions)}"
            grid = self.normal_grid if isinstance(body["year"], list) else self.current_grid
            self._downloads[job_id] = json.dumps(grid).encode()
            return httpx.Response(202, json={"request_id": job_id, "state": "queued"})

        if path.startswith("/api/v2/tasks/"):
            job_id = path.rsplit("/", 1)[-1]
            return httpx.Response(
                200, json={"state": "completed", "location": f"download/{job_id}"}
            )

        if path.startswith("/api/v2/download/"):
            job_id = path.rsplit("/", 1)[-1]
            return httpx.Response(200, content=self._downloads[job_id])

        return httpx.Response(404, json={"error": f"unexpected {request.method} {path}"})


@pytest.fixture
def fake_tools() -> FakeTools:
    return FakeTools()


@pytest.fixture
def fast_cds_config() -> CDSConfig:
    return CDSConfig(base_url=CDS_BASE, poll_initial_seconds=0)
