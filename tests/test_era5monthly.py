from datetime import datetime
from pathlib import Path

import pytest

from conftest import FakeCDS, FakeTools, read_grid
from forager.conversions import ConversionRunner, ExternalToolFailed
from forager.datasets import Dataset
from forager.dates import EPOCH_START
from forager.services.cds import CDSClient
from forager.sources.era5monthly import (
    AOI_BBOX,
    Era5MonthlySource,
    ForageStatus,
    next_cursor,
)
from forager.storage import SourceState


def make_dataset(name: str, variable: str, anomaly: bool = False) -> Dataset:
    return Dataset(
        name=name,
        variable=variable,
        output_dir=Path("era5monthly") / name,
        layer_name="layer",
        anomaly=anomaly,
    )


async def forage(tmp_path, cds_config, fake: FakeCDS, tools: FakeTools, state, datasets):
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir(exist_ok=True)
    runner = ConversionRunner(temp_dir, execute=tools)

    async with CDSClient(
        api_key="1:k",
        config=cds_config,
        download_dir=temp_dir,
        transport=fake.transport(),
    ) as cds:
        source = Era5MonthlySource(
            cds=cds,
            runner=runner,
            cache_dir=tmp_path / "cache",
            output_root=tmp_path / "out",
        )
        return await source.forage(state, datasets)


def test_next_cursor():
    assert next_cursor(SourceState()) == EPOCH_START
    assert next_cursor(SourceState(date="2023-12-01T00:00:00")) == datetime(2024, 1, 1)


async def test_one_request_covers_union_of_variables(tmp_path, fast_cds_config):
    fake = FakeCDS()
    tools = FakeTools()
    datasets = [
        make_dataset("t2m", "2m_temperature"),
        make_dataset("tp", "total_precipitation"),
        make_dataset("t2m-anomaly", "2m_temperature", anomaly=True),
    ]

    result = await forage(
        tmp_path, fast_cds_config, fake, tools, SourceState(date="2023-12-01T00:00:00"), datasets
    )

    assert result.status is ForageStatus.UPDATED
    current = [body for body in fake.submissions if not isinstance(body["year"], list)]
    assert len(current) == 1
    assert current[0]["variable"] == ["2m_temperature", "total_precipitation"]
    assert current[0]["year"] == 2024
    assert current[0]["month"] == "01"
    assert current[0]["area"] == AOI_BBOX

    records = sorted(args[2] for command, args in tools.calls if command == "wgrib")
    assert records == ["1", "1", "2", "all"]
    assert set(result.outputs) == {"t2m", "tp", "t2m-anomaly"}
    assert set(result.updates) == {"t2m", "tp", "t2m-anomaly"}


async def test_normal_request_spans_thirty_years(tmp_path, fast_cds_config):
    fake = FakeCDS()

    await forage(
        tmp_path,
        fast_cds_config,
        fake,
        FakeTools(),
        SourceState(date="2023-12-01T00:00:00"),
        [make_dataset("t2m-anomaly", "2m_temperature", anomaly=True)],
    )

    (normal,) = fake.normal_submissions
    assert normal["year"] == list(range(1991, 2021))
    assert normal["month"] == "01"
    assert normal["variable"] == "2m_temperature"


async def test_datasets_sharing_a_normal_build_it_once(tmp_path, fast_cds_config):
    fake = FakeCDS()
    datasets = [
        make_dataset(f"t2m-anomaly-{i}", "2m_temperature", anomaly=True) for i in range(3)
    ]
    state = SourceState(date="2023-12-01T00:00:00")

    result = await forage(tmp_path, fast_cds_config, fake, FakeTools(), state, datasets)

    assert len(fake.normal_submissions) == 1
    assert list(result.new_state.normals["2m_temperature"]) == ["01"]
    for output in result.outputs.values():
        assert read_grid(output) == [20.0, 5.0]


async def test_cached_normal_is_reused(tmp_path, fast_cds_config):
    normal = tmp_path / "january.grib"
    normal.write_text("[290.0, 290.0]")
    fake = FakeCDS()
    state = SourceState(
        date="2023-12-01T00:00:00", normals={"2m_temperature": {"01": str(normal)}}
    )

    result = await forage(
        tmp_path,
        fast_cds_config,
        fake,
        FakeTools(),
        state,
        [make_dataset("t2m-anomaly", "2m_temperature", anomaly=True)],
    )

    assert fake.normal_submissions == []
    assert read_grid(result.outputs["t2m-anomaly"]) == [10.0, 0.0]


async def test_first_cycle_starts_at_epoch(tmp_path, fast_cds_config):
    fake = FakeCDS()

    result = await forage(
        tmp_path, fast_cds_config, fake, FakeTools(), SourceState(), [make_dataset("tp", "total_precipitation")]
    )

    assert result.new_state.date == "1959-01-01T00:00:00"
    assert fake.submissions[0]["year"] == 1959


async def test_unchanged_version_ends_cycle_without_submitting(tmp_path, fast_cds_config):
    fake = FakeCDS(update_date="2024-02-05")
    state = SourceState(date="2024-01-01T00:00:00", last_updated="2024-02-05")

    result = await forage(
        tmp_path, fast_cds_config, fake, FakeTools(), state, [make_dataset("tp", "total_precipitation")]
    )

    assert result.status is ForageStatus.NO_UPDATE
    assert result.new_state == state
    assert result.updates == {}
    assert fake.submissions == []


async def test_no_data_records_version_and_keeps_cursor(tmp_path, fast_cds_config):
    fake = FakeCDS(update_date="2024-02-05", no_data=True)
    state = SourceState(date="2024-01-01T00:00:00", last_updated="2024-01-04")

    result = await forage(
        tmp_path, fast_cds_config, fake, FakeTools(), state, [make_dataset("tp", "total_precipitation")]
    )

    assert result.status is ForageStatus.NO_DATA
    assert result.new_state.date == "2024-01-01T00:00:00"
    assert result.new_state.last_updated == "2024-02-05"
    assert result.outputs == {}


async def test_conversion_failure_aborts_cycle(tmp_path, fast_cds_config):
    fake = FakeCDS()
    tools = FakeTools(fail={"gdal_translate"})

    with pytest.raises(ExternalToolFailed):
        await forage(
            tmp_path,
            fast_cds_config,
            fake,
            tools,
            SourceState(date="2023-12-01T00:00:00"),
            [make_dataset("tp", "total_precipitation")],
        )
