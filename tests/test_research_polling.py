from unittest.mock import patch

import pytest

from conftest import make_rpc_response
from notebooklm_bridge.errors import NoActiveTaskError
from notebooklm_bridge.polling import TaskKind, TaskStatus


def research_task(task_id, status_code, query="Query", sources=None, summary=""):
    # [task_id, [null, [query, source_type], mode, [sources, summary], status_code]]
    return [task_id, [None, [query, 1], 1, [sources or [], summary], status_code]]


class TestResearchPolling:
    def test_poll_by_task_id(self, mock_client):
        mock_raw_result = [[
            research_task("task_uuid_3", 1),
            research_task("task_uuid_2", 6),
            research_task("task_uuid_1", 2),
        ]]

        with patch.object(mock_client, "_call_rpc", return_value=mock_raw_result):
            assert mock_client.poll_research("nb_id", task_id="task_uuid_1").status is TaskStatus.COMPLETED
            # Imported is also completed
            assert mock_client.poll_research("nb_id", task_id="task_uuid_2").status is TaskStatus.COMPLETED
            assert mock_client.poll_research("nb_id", task_id="task_uuid_3").status is TaskStatus.RUNNING

            with pytest.raises(NoActiveTaskError):
                mock_client.poll_research("nb_id", task_id="unknown_uuid")

            # Without tracking, the most recent task is reported
            assert mock_client.poll_research("nb_id").task_id == "task_uuid_3"

    def test_no_task_anywhere(self, mock_client):
        with patch.object(mock_client, "_call_rpc", return_value=[]):
            with pytest.raises(NoActiveTaskError):
                mock_client.poll_research("nb_id")

    def test_started_task_is_pending_until_listed(self, mock_client, http_client):
        http_client.post.side_effect = [
            make_rpc_response("Ljjv0c", ["task-new", None]),
            make_rpc_response("e3bVqc", [[research_task("task-old", 2)]]),
        ]

        task = mock_client.start_research("nb1", "quantum computing")
        snapshot = mock_client.poll_research("nb1")

        assert task.status is TaskStatus.PENDING
        assert task.kind is TaskKind.RESEARCH
        assert snapshot.task_id == "task-new"
        assert snapshot.status is TaskStatus.PENDING
        assert snapshot.status is not TaskStatus.COMPLETED

    def test_running_task_is_never_reported_completed(self, mock_client, http_client):
        http_client.post.side_effect = [
            make_rpc_response("Ljjv0c", ["task-1", None]),
            make_rpc_response("e3bVqc", [[research_task("task-1", 1)]]),
        ]

        mock_client.start_research("nb1", "topic")
        snapshot = mock_client.poll_research("nb1")

        assert snapshot.status in (TaskStatus.PENDING, TaskStatus.RUNNING)

    def test_repeated_polls_are_stable(self, mock_client):
        with patch.object(mock_client, "_call_rpc", return_value=[[research_task("t1", 1)]]) as mock_rpc:
            statuses = [mock_client.poll_research("nb1").status for _ in range(3)]

        assert statuses == [TaskStatus.RUNNING] * 3
        assert mock_rpc.call_count == 3

    def test_tracking_dropped_after_terminal_status(self, mock_client):
        with patch.object(mock_client, "_call_rpc", return_value=["task-1", None]):
            mock_client.start_research("nb1", "topic")
        assert "nb1" in mock_client._active_research

        sources = [["https://example.com", "Example", "desc", 1]]
        with patch.object(mock_client, "_call_rpc", return_value=[[research_task("task-1", 2, sources=sources, summary="Done")]]):
            snapshot = mock_client.poll_research("nb1")

        assert snapshot.status is TaskStatus.COMPLETED
        assert snapshot.result["source_count"] == 1
        assert snapshot.result["sources"][0]["url"] == "https://example.com"
        assert snapshot.result["summary"] == "Done"
        assert "nb1" not in mock_client._active_research

    def test_deep_research_report(self, mock_client):
        deep_source = [None, "Research Report", None, 5, None, None, ["# Findings\n..."]]
        with patch.object(mock_client, "_call_rpc", return_value=[[research_task("t1", 2, sources=[deep_source])]]):
            snapshot = mock_client.poll_research("nb1")

        assert snapshot.result["report"] == "# Findings\n..."
        assert snapshot.result["sources"][0]["result_type"] == "deep_report"


class TestStartResearch:
    def test_deep_drive_rejected(self, mock_client, http_client):
        with pytest.raises(ValueError, match="Deep Research only supports Web"):
            mock_client.start_research("nb1", "topic", source="drive", mode="deep")
        http_client.post.assert_not_called()

    def test_unknown_mode(self, mock_client, http_client):
        with pytest.raises(ValueError):
            mock_client.start_research("nb1", "topic", mode="slow")

    def test_deep_uses_deep_rpc(self, mock_client):
        with patch.object(mock_client, "_call_rpc", return_value=["task-deep", "report-1"]) as mock_rpc:
            task = mock_client.start_research("nb1", "topic", mode="deep")

        assert mock_rpc.call_args[0][0] == "QA9ei"
        assert task.result["mode"] == "deep"
        assert task.result["report_id"] == "report-1"


class TestStudioPolling:
    def test_studio_status(self, mock_client):
        audio = ["art-1", "Deep Dive", 1, [], 3, None, [None, None, None, "https://audio.example/a.mp4"]]
        pending = ["art-2", "Second", 1, [], 1]
        with patch.object(mock_client, "_call_rpc", return_value=[[audio, pending]]):
            artifacts = mock_client.poll_studio_status("nb1")

        assert [a.task_id for a in artifacts] == ["art-1", "art-2"]
        assert artifacts[0].status is TaskStatus.COMPLETED
        assert artifacts[0].result["audio_url"] == "https://audio.example/a.mp4"
        assert artifacts[0].result["type"] == "audio"
        assert artifacts[1].status is TaskStatus.RUNNING

    def test_studio_status_empty(self, mock_client):
        with patch.object(mock_client, "_call_rpc", return_value=None):
            assert mock_client.poll_studio_status("nb1") == []

    def test_audio_overview_needs_sources(self, mock_client):
        from notebooklm_bridge.errors import EmptySourceSetError

        with patch.object(mock_client, "get_notebook", return_value=[["Nb", [], "nb1"]]):
            with pytest.raises(EmptySourceSetError):
                mock_client.create_audio_overview("nb1")

    def test_audio_overview_started(self, mock_client):
        with patch.object(mock_client, "_call_rpc", return_value=[["art-9", "Audio", 1, [], 1]]):
            task = mock_client.create_audio_overview("nb1", source_ids=["s1"], format="brief")

        assert task.task_id == "art-9"
        assert task.kind is TaskKind.STUDIO
        assert task.status is TaskStatus.RUNNING
        assert task.result["format"] == "brief"
