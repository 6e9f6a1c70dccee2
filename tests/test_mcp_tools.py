"""Per-tool MCP integration tests verifying minified response shapes.

Covers the session, replay and history tools for correct minification,
TUI JSON sync, auto-save of finished games, and schema validation. The
opponent is a scripted oracle, so no Stockfish is needed.

Run:
    pytest tests/test_mcp_tools.py -v
"""

from __future__ import annotations

import asyncio
import importlib.util
import json
import sys
from pathlib import Path

import pytest

from conftest import ScriptedOracle
from pgchess.analysis import GameAnalyzer
from pgchess.history import HistoryStore
from pgchess.oracle import SuggestionError

# Add project root so imports resolve
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

# Import server module from hyphenated directory via importlib
_server_path = _PROJECT_ROOT / "mcp-server" / "server.py"
_spec = importlib.util.spec_from_file_location("mcp_server_tools_test", _server_path)
_server = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(_server)

# Server tool functions
new_game = _server.new_game
reset_game = _server.reset_game
get_board = _server.get_board
end_game = _server.end_game
click_square = _server.click_square
make_move = _server.make_move
retry_opponent = _server.retry_opponent
get_hint = _server.get_hint
set_difficulty = _server.set_difficulty
adjust_difficulty = _server.adjust_difficulty
get_game_pgn = _server.get_game_pgn
load_replay = _server.load_replay
analyze_game = _server.analyze_game
replay_board = _server.replay_board
replay_report = _server.replay_report
evaluation_series = _server.evaluation_series
list_history = _server.list_history
clear_history = _server.clear_history

# Import response schemas for validation
sys.path.insert(0, str(_PROJECT_ROOT / "mcp-server"))
from response_schemas import (  # noqa: E402
    ERROR_SCHEMA,
    REPLAY_FRAME_SCHEMA,
    REPLAY_REPORT_SCHEMA,
    SESSION_VIEW_SCHEMA,
    validate_response,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_FOOLS_MATE = ("f2f3", "e7e5", "g2g4", "d8h4")


def _assert_session_view(response: dict) -> None:
    assert "board" not in response, "board listing should be minified away"
    assert "captured_pieces" not in response
    assert isinstance(response.get("move_list"), str), "move_list must be PGN string"
    errors = validate_response(response, SESSION_VIEW_SCHEMA)
    assert not errors, f"Schema validation errors: {errors}"


def _assert_error(response: dict) -> None:
    assert "error" in response
    assert not validate_response(response, ERROR_SCHEMA)


def _read_current_game_json(data_dir: Path) -> dict:
    return json.loads((data_dir / "current_game.json").read_text(encoding="utf-8"))


def _annotations(sans):
    return [
        {"ply": i, "side": "white" if i % 2 == 0 else "black", "san": san,
         "classification": "Good", "evaluation": 10 * i}
        for i, san in enumerate(sans)
    ]


class _ClosableOracle(ScriptedOracle):
    def __init__(self) -> None:
        super().__init__()
        self.closed = 0

    def close(self) -> None:
        self.closed += 1


@pytest.fixture()
def oracle():
    return ScriptedOracle()


@pytest.fixture(autouse=True)
def _isolated_server(tmp_path, monkeypatch, oracle):
    """Point the server at a temp data dir and a scripted opponent."""
    data_dir = tmp_path / "data"
    monkeypatch.setattr(_server, "_DATA_DIR", data_dir)
    monkeypatch.setattr(_server, "_history", HistoryStore(data_dir / "history.json"))
    monkeypatch.setattr(_server, "_make_oracle", lambda: oracle)
    _server._games.clear()
    _server._replays.clear()
    _server._saved_games.clear()
    yield data_dir
    _server._games.clear()
    _server._replays.clear()


def _play_two_player(game_id: str, *ucis: str) -> dict:
    response = {}
    for uci in ucis:
        response = asyncio.run(make_move(game_id, uci))
        assert response["accepted"], uci
    return response


# ---------------------------------------------------------------------------
# Session tools
# ---------------------------------------------------------------------------


class TestNewGame:

    def test_default_game(self, _isolated_server):
        response = asyncio.run(new_game())
        _assert_session_view(response)
        assert response["state"] == "awaiting_human_input"
        assert response["move_list"] == ""
        assert response["result"] == "*"
        assert response["game_id"] in _server._games

        synced = _read_current_game_json(_isolated_server)
        assert len(synced["board"]) == 32
        assert synced["state"] == "awaiting_human_input"

    def test_human_black_computer_moves_first(self, oracle):
        response = asyncio.run(new_game(human_color="black"))
        _assert_session_view(response)
        assert response["move_list"] == "1.a3"
        assert response["turn"] == "black"
        assert oracle.requests[0].level == 4

    def test_tier_sets_level(self):
        response = asyncio.run(new_game(tier="Intermediate"))
        assert response["level"] == 5

    def test_unknown_tier(self):
        _assert_error(asyncio.run(new_game(tier="Impossible")))

    def test_unknown_mode(self):
        response = asyncio.run(new_game(mode="blitz"))
        _assert_error(response)
        assert "Could not start game" in response["error"]

    def test_invalid_fen(self):
        _assert_error(asyncio.run(new_game(starting_fen="xyz")))


class TestMakeMove:

    def test_opponent_replies(self):
        game_id = asyncio.run(new_game())["game_id"]
        response = asyncio.run(make_move(game_id, "e2e4"))
        _assert_session_view(response)
        assert response["accepted"] is True
        assert response["move_list"] == "1.e4 a5"
        assert response["last_move"] == "a5"
        assert response["turn"] == "white"

    def test_illegal_move_not_an_error(self):
        game_id = asyncio.run(new_game())["game_id"]
        response = asyncio.run(make_move(game_id, "e2e5"))
        _assert_session_view(response)
        assert response["accepted"] is False
        assert response["move_list"] == ""

    def test_dash_format_accepted(self):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        response = asyncio.run(make_move(game_id, "g1-f3"))
        assert response["accepted"]
        assert response["move_list"] == "1.Nf3"

    def test_bad_format(self):
        game_id = asyncio.run(new_game())["game_id"]
        _assert_error(asyncio.run(make_move(game_id, "e4")))

    def test_unknown_game(self):
        _assert_error(asyncio.run(make_move("missing", "e2e4")))

    def test_opponent_failure_and_retry(self, oracle):
        oracle.queue.append(SuggestionError("engine crashed"))
        game_id = asyncio.run(new_game())["game_id"]
        response = asyncio.run(make_move(game_id, "e2e4"))
        assert "engine crashed" in response["opponent_error"]
        assert response["state"] == "awaiting_opponent_move"

        retried = asyncio.run(retry_opponent(game_id))
        assert retried["moved"] is True
        assert "opponent_error" not in retried
        assert retried["move_list"] == "1.e4 a5"


class TestClickSquare:

    def test_select_then_move(self):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        selected = asyncio.run(click_square(game_id, "E2"))
        assert selected["selected_square"] == "e2"
        assert selected["legal_destinations"] == ["e3", "e4"]
        assert selected["moved"] is False

        moved = asyncio.run(click_square(game_id, "e4"))
        assert moved["moved"] is True
        assert moved["selected_square"] is None
        assert moved["move_list"] == "1.e4"


class TestGameEnd:

    def test_finished_game_is_saved_once(self, _isolated_server):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        response = _play_two_player(game_id, *_FOOLS_MATE)
        assert response["is_game_over"] is True
        assert response["result"] == "0-1"
        assert response["termination"] == "checkmate"
        assert response["state"] == "terminated"

        after = asyncio.run(make_move(game_id, "a2a3"))
        assert after["accepted"] is False

        pgns = list((_isolated_server / "games").glob("*.pgn"))
        assert len(pgns) == 1
        assert "Qh4#" in pgns[0].read_text(encoding="utf-8")

        history = list_history()["games"]
        assert len(history) == 1
        assert history[0]["result"] == "0-1"
        assert history[0]["white"] == "White"

    def test_reset_game_starts_fresh(self, _isolated_server):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        _play_two_player(game_id, *_FOOLS_MATE)
        response = asyncio.run(reset_game(game_id))
        _assert_session_view(response)
        assert response["move_list"] == ""
        assert response["state"] == "awaiting_human_input"

        _play_two_player(game_id, *_FOOLS_MATE)
        assert len(list_history()["games"]) == 2

    def test_get_board_and_pgn(self):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        _play_two_player(game_id, "e2e4", "e7e5")
        board = get_board(game_id)
        _assert_session_view(board)
        assert board["move_list"] == "1.e4 e5"
        pgn = get_game_pgn(game_id)["pgn"]
        assert "1. e4 e5" in pgn
        _assert_error(get_board("missing"))
        _assert_error(get_game_pgn("missing"))

    def test_end_game_closes_opponent(self, monkeypatch):
        oracle = _ClosableOracle()
        monkeypatch.setattr(_server, "_make_oracle", lambda: oracle)
        game_id = asyncio.run(new_game())["game_id"]
        assert end_game(game_id) == {"game_id": game_id, "closed": True}
        assert oracle.closed == 1
        assert game_id not in _server._games
        _assert_error(get_board(game_id))
        _assert_error(end_game(game_id))

    def test_failed_new_game_closes_opponent(self, monkeypatch):
        oracle = _ClosableOracle()
        monkeypatch.setattr(_server, "_make_oracle", lambda: oracle)
        _assert_error(asyncio.run(new_game(human_color="purple")))
        assert oracle.closed == 1
        assert not _server._games


class TestHintsAndDifficulty:

    def test_hint(self, oracle):
        oracle.queue.append("g1f3")
        game_id = asyncio.run(new_game())["game_id"]
        hint = asyncio.run(get_hint(game_id))
        assert hint == {"uci": "g1f3", "san": "Nf3", "explanation": "scripted"}
        assert get_board(game_id)["move_list"] == ""

    def test_hint_in_two_player_game(self):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        _assert_error(asyncio.run(get_hint(game_id)))

    def test_bad_hint(self, oracle):
        oracle.queue.append("e2e5")
        game_id = asyncio.run(new_game())["game_id"]
        response = asyncio.run(get_hint(game_id))
        _assert_error(response)
        assert "Hint failed" in response["error"]

    def test_set_difficulty(self):
        game_id = asyncio.run(new_game())["game_id"]
        response = set_difficulty(game_id, 0)
        assert response["level"] == 1
        assert get_board(game_id)["level"] == 1

    def test_adjust_difficulty(self):
        response = adjust_difficulty("beginner")
        assert response["tier"] == "Beginner"
        assert response["level"] == 2
        assert response["description"]
        _assert_error(adjust_difficulty("nope"))


# ---------------------------------------------------------------------------
# Replay tools
# ---------------------------------------------------------------------------


class TestReplayTools:

    def test_load_and_navigate(self, _isolated_server):
        sans = ["e4", "e5", "Nf3", "Nc6"]
        loaded = load_replay(_annotations(sans), pgn="1. e4 e5 2. Nf3 Nc6 *",
                             accuracies={"white": 75.0, "black": 50.0})
        assert loaded["move_count"] == 4
        assert loaded["frame"]["ply"] == 3
        replay_id = loaded["replay_id"]

        start = replay_board(replay_id, -1)
        assert not validate_response(start, REPLAY_FRAME_SCHEMA)
        assert start["last_move"] is None
        assert start["annotation"] is None

        frame = replay_board(replay_id, 99)
        assert frame["ply"] == 3
        assert frame["annotation"]["classification"] == "Good"
        assert _read_current_game_json(_isolated_server)["ply"] == 3

        report = replay_report(replay_id)
        assert not validate_response(report, REPLAY_REPORT_SCHEMA)
        assert report["counts"] == {"white": {"Good": 2}, "black": {"Good": 2}}
        assert report["accuracy"] == {"white": 75.0, "black": 50.0}

        series = evaluation_series(replay_id)["series"]
        assert series == [[0, 0.0], [1, 10.0], [2, 20.0], [3, 30.0]]

    def test_count_mismatch(self):
        response = load_replay(_annotations(["e4"]), pgn="1. e4 e5 *")
        _assert_error(response)
        assert response["reason"] == "count_mismatch"

    def test_bad_accuracy(self):
        response = load_replay(
            _annotations(["e4", "e5"]), pgn="1. e4 e5 *", accuracies={"white": "n/a"}
        )
        _assert_error(response)
        assert response["reason"] == "accuracy"
        assert not _server._replays

    def test_needs_source(self):
        _assert_error(load_replay([]))

    def test_load_from_history(self):
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        _play_two_player(game_id, *_FOOLS_MATE)
        loaded = load_replay(_annotations(["f3", "e5", "g4", "Qh4#"]), history_index=0)
        assert loaded["move_count"] == 4
        _assert_error(load_replay([], history_index=3))

    def test_unknown_replay(self):
        _assert_error(replay_board("missing", 0))
        _assert_error(replay_report("missing"))
        _assert_error(evaluation_series("missing"))

    def test_analyze_game(self, monkeypatch, mock_chess_engine):
        monkeypatch.setattr(
            _server, "GameAnalyzer", lambda: GameAnalyzer(engine=mock_chess_engine),
        )
        response = asyncio.run(analyze_game("1. e4 e5 2. Nf3 Nc6 *"))
        assert response["move_count"] == 4
        assert not validate_response(response["report"], REPLAY_REPORT_SCHEMA)
        assert response["replay_id"] in _server._replays

    def test_analyze_invalid_pgn(self, monkeypatch, mock_chess_engine):
        monkeypatch.setattr(
            _server, "GameAnalyzer", lambda: GameAnalyzer(engine=mock_chess_engine),
        )
        response = asyncio.run(analyze_game("1. e4 e5 2. Ke3"))
        _assert_error(response)
        assert "Invalid PGN" in response["error"]


class TestHistoryTools:

    def test_empty_and_clear(self):
        assert list_history() == {"games": []}
        game_id = asyncio.run(new_game(mode="two-player"))["game_id"]
        _play_two_player(game_id, *_FOOLS_MATE)
        assert len(list_history()["games"]) == 1
        assert "message" in clear_history()
        assert list_history() == {"games": []}
