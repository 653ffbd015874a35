"""Unit tests for the operator CLI — argument parsing, dispatch and JSON output."""
import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from manage import _build_arg_parser, main
from resolution.errors import AlreadyResolved, TransactionFailure
from schemas.resolution import DismissResult, QueuePage, ResolveResult

TENANT = str(uuid.uuid4())
CALL = uuid.uuid4()
ACCOUNT = uuid.uuid4()


def _service(**methods):
    service = MagicMock()
    for name, value in methods.items():
        setattr(service, name, AsyncMock(**value))
    return service


@patch("manage.dispose_engine", new_callable=AsyncMock)
class TestMain:
    def test_resolve_prints_result_as_json(self, mock_dispose, capsys):
        result = ResolveResult(call_id=CALL, account_id=ACCOUNT, aliases_added=["contoso.example"])
        service = _service(resolve_call={"return_value": result})

        code = main(
            ["resolve", "--tenant", TENANT, "--call", str(CALL), "--account", str(ACCOUNT)],
            service=service,
        )

        assert code == 0
        service.resolve_call.assert_awaited_once_with(TENANT, str(CALL), str(ACCOUNT))
        output = json.loads(capsys.readouterr().out)
        assert output["account_id"] == str(ACCOUNT)
        assert output["aliases_added"] == ["contoso.example"]
        mock_dispose.assert_awaited_once()

    def test_queue_passes_query_options(self, mock_dispose, capsys):
        page = QueuePage(items=[], total=0, page=2, page_size=10)
        service = _service(list_queue={"return_value": page})

        code = main(
            [
                "queue", "--tenant", TENANT, "--page", "2", "--page-size", "10",
                "--search", "acme", "--sort-by", "match_confidence",
            ],
            service=service,
        )

        assert code == 0
        query = service.list_queue.await_args.args[1]
        assert query == {
            "page": 2,
            "page_size": 10,
            "search": "acme",
            "sort_by": "match_confidence",
            "sort_order": "desc",
        }
        assert json.loads(capsys.readouterr().out)["page"] == 2

    def test_dismiss_accepts_repeated_calls(self, mock_dispose, capsys):
        second = uuid.uuid4()
        service = _service(
            dismiss_calls={"return_value": DismissResult(dismissed=[CALL, second])}
        )

        code = main(
            ["dismiss", "--tenant", TENANT, "--call", str(CALL), "--call", str(second)],
            service=service,
        )

        assert code == 0
        service.dismiss_calls.assert_awaited_once_with(TENANT, [str(CALL), str(second)])

    def test_list_results_are_serialized(self, mock_dispose, capsys):
        service = _service(find_duplicates={"return_value": []})
        assert main(["duplicates", "--tenant", TENANT], service=service) == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_resolution_error_goes_to_stderr(self, mock_dispose, capsys):
        service = _service(
            resolve_call={"side_effect": AlreadyResolved("Call is already resolved")}
        )

        code = main(
            ["resolve", "--tenant", TENANT, "--call", str(CALL), "--account", str(ACCOUNT)],
            service=service,
        )

        assert code == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        error = json.loads(captured.err)
        assert error["error"] == "already_resolved"
        assert error["retryable"] is False
        mock_dispose.assert_awaited_once()

    def test_transaction_failure_is_marked_retryable(self, mock_dispose, capsys):
        service = _service(
            merge_accounts={"side_effect": TransactionFailure("rolled back")}
        )

        code = main(
            ["merge", "--tenant", TENANT, "--source", str(CALL), "--target", str(ACCOUNT)],
            service=service,
        )

        assert code == 1
        assert json.loads(capsys.readouterr().err)["retryable"] is True

    def test_no_command_prints_help(self, mock_dispose, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out
        mock_dispose.assert_not_awaited()


class TestArgParser:
    def test_tenant_is_required(self):
        with pytest.raises(SystemExit):
            _build_arg_parser().parse_args(["stats"])

    def test_merge_options(self):
        args = _build_arg_parser().parse_args(
            [
                "merge", "--tenant", TENANT, "--source", "a", "--target", "b",
                "--initiated-by", "ops", "--notes", "dup",
            ]
        )
        assert (args.source, args.target, args.initiated_by, args.notes) == (
            "a", "b", "ops", "dup"
        )

    def test_sort_order_is_restricted(self):
        with pytest.raises(SystemExit):
            _build_arg_parser().parse_args(
                ["queue", "--tenant", TENANT, "--sort-order", "sideways"]
            )
