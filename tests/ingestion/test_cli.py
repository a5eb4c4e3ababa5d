"""Unit tests for the ingestion command-line interface."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lecturechat.ingestion import cli
from lecturechat.ingestion.schemas import ExtractionMethod, IngestionResult


@pytest.mark.unit
class TestParser:
    """Test argument parsing."""

    def test_defaults(self) -> None:
        args = cli.build_parser().parse_args(["vid_1", "vid_2"])

        assert args.video_ids == ["vid_1", "vid_2"]
        assert not args.resync
        assert not args.recover_stuck
        assert args.concurrency is None

    def test_flags(self) -> None:
        args = cli.build_parser().parse_args(["--resync", "--concurrency", "8", "vid_1"])

        assert args.resync
        assert args.concurrency == 8

    @pytest.mark.asyncio
    async def test_nothing_to_do_is_a_usage_error(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            await cli.main([])

        assert exc_info.value.code == 2


@pytest.mark.unit
class TestMain:
    """Test a full CLI run against an in-memory repository."""

    @pytest.fixture
    def wired(self, ingestion_config, repository, video_factory):
        repository.videos["vid_1"] = video_factory()
        pipeline = MagicMock()
        pipeline.process_video = AsyncMock(
            return_value=IngestionResult(
                video_id="vid_1",
                status="completed",
                chunks_created=4,
                method=ExtractionMethod.YOUTUBE_CAPTIONS,
            )
        )
        http_client = MagicMock()
        http_client.__aenter__ = AsyncMock(return_value=http_client)
        http_client.__aexit__ = AsyncMock(return_value=None)

        with (
            patch.object(cli, "get_config", return_value=ingestion_config),
            patch.object(cli, "get_supabase_client", return_value=MagicMock()),
            patch.object(cli, "StorageService", return_value=repository),
            patch.object(cli, "get_http_client", return_value=http_client),
            patch.object(cli, "build_ingestion_pipeline", return_value=pipeline),
        ):
            yield pipeline

    @pytest.mark.asyncio
    async def test_runs_requested_videos(self, wired, capsys) -> None:
        exit_code = await cli.main(["vid_1", "--concurrency", "1"])

        assert exit_code == 0
        wired.process_video.assert_awaited_once_with("vid_1", force_resync=False)
        output = capsys.readouterr().out
        assert "vid_1: queued" in output
        assert "4 chunks via youtube_captions" in output

    @pytest.mark.asyncio
    async def test_failures_set_exit_code(self, wired) -> None:
        wired.process_video.return_value = IngestionResult(
            video_id="vid_1", status="failed", error="No captions available"
        )

        assert await cli.main(["vid_1"]) == 1
