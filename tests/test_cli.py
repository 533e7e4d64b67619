import json
import sys
from unittest.mock import MagicMock, patch

from sqlfeeder.cli import main
from sqlfeeder.pipeline import RunStatistics, State
from sqlfeeder.settings import RunSettings

SETTINGS = RunSettings.model_validate(
    {
        "source": {"url": "sqlite+pysqlite:///:memory:", "locale": "en_US", "timezone": "UTC"},
        "sql": "SELECT 1 AS one",
        "ingest": {"url": "http://search.local:9200", "index": "products"},
    }
)


def stdout_json(mock_stdout):
    output = "".join(call.args[0] for call in mock_stdout.call_args_list)
    return json.loads(output)


def test_cli_run_success():
    statistics = RunStatistics(counter=4, state=State.IDLE, rows_read=2, submitted=2)
    context = MagicMock()
    context.execute.return_value = statistics

    with patch("sqlfeeder.cli.load_settings", return_value=SETTINGS), \
         patch("sqlfeeder.cli.Source") as mock_source, \
         patch("sqlfeeder.cli.RunContext", return_value=context) as mock_context, \
         patch("sys.stdout.write") as mock_stdout, \
         patch("sys.exit") as mock_exit:

        sys.argv = ["sqlfeeder", "run", "--settings", "run.yaml", "--counter", "4"]
        main()

        mock_source.assert_called_once_with(SETTINGS.source)
        assert mock_context.call_args.kwargs["counter"] == 4
        assert stdout_json(mock_stdout)["submitted"] == 2
        mock_exit.assert_called_once_with(0)


def test_cli_run_aborted_exits_nonzero():
    context = MagicMock()
    context.execute.return_value = RunStatistics(counter=0, state=State.ABORTED, error_message="IngestFatalError: 400")

    with patch("sqlfeeder.cli.load_settings", return_value=SETTINGS), \
         patch("sqlfeeder.cli.Source"), \
         patch("sqlfeeder.cli.RunContext", return_value=context), \
         patch("sys.stdout.write") as mock_stdout, \
         patch("sys.stderr.write"), \
         patch("sys.exit") as mock_exit:

        sys.argv = ["sqlfeeder", "run", "--settings", "run.yaml"]
        main()

        assert stdout_json(mock_stdout)["state"] == "aborted"
        mock_exit.assert_called_once_with(1)


def test_cli_test_connection_source_success():
    with patch("sqlfeeder.cli.load_settings", return_value=SETTINGS), \
         patch("sqlfeeder.cli.test_source_connection", return_value=True), \
         patch("sys.stdout.write") as mock_stdout, \
         patch("sys.exit") as mock_exit:

        sys.argv = ["sqlfeeder", "test-connection", "--settings", "run.yaml"]
        main()

        assert stdout_json(mock_stdout) == {"success": True, "label": "Source (sqlite)"}
        mock_exit.assert_called_once_with(0)


def test_cli_test_connection_search_failure():
    with patch("sqlfeeder.cli.load_settings", return_value=SETTINGS), \
         patch("sqlfeeder.cli.test_search_connection", return_value=False), \
         patch("sys.stdout.write") as mock_stdout, \
         patch("sys.stderr.write"), \
         patch("sys.exit") as mock_exit:

        sys.argv = ["sqlfeeder", "test-connection", "--settings", "run.yaml", "--target", "search"]
        main()

        assert stdout_json(mock_stdout)["success"] is False
        mock_exit.assert_called_once_with(1)


def test_cli_missing_args():
    # argparse reports missing required arguments with exit code 2
    with patch("sys.exit", side_effect=SystemExit(2)) as mock_exit, patch("sys.stderr.write"):
        sys.argv = ["sqlfeeder", "run"]
        try:
            main()
        except SystemExit:
            pass
        assert mock_exit.call_args_list[0].args[0] == 2
