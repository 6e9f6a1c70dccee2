"""Pytest tests for GameAnalyzer with a mocked engine."""

from __future__ import annotations

import pytest

from pgchess import rules
from pgchess.analysis import GameAnalyzer
from pgchess.replay import ReplayEngine

_PGN = "1. e4 e5 2. Nf3 Nc6 *"


class TestGameAnalyzer:

    def test_one_annotation_per_ply(self, mock_chess_engine):
        result = GameAnalyzer(engine=mock_chess_engine).analyze(_PGN)
        assert [a.ply for a in result.annotations] == [0, 1, 2, 3]
        assert [a.side for a in result.annotations] == ["white", "black", "white", "black"]
        assert [a.san for a in result.annotations] == ["e4", "e5", "Nf3", "Nc6"]

    def test_non_best_moves_get_alternative(self, mock_chess_engine):
        result = GameAnalyzer(engine=mock_chess_engine).analyze(_PGN)
        first = result.annotations[0]
        # mock engine's best move is the alphabetically first UCI move (a2a3)
        assert first.classification == "Good"
        assert first.best_alternative == "a3"
        assert "a3 was stronger" in first.explanation

    def test_evaluation_is_from_whites_view(self, mock_chess_engine):
        result = GameAnalyzer(engine=mock_chess_engine).analyze(_PGN)
        white, black = result.annotations[0], result.annotations[1]
        assert white.evaluation == -15
        assert black.evaluation == 15

    def test_accuracy_counts_moves_within_threshold(self, mock_chess_engine):
        result = GameAnalyzer(engine=mock_chess_engine).analyze("1. a3 e5 *")
        assert result.accuracies == {"white": 100.0, "black": 0.0}
        assert result.annotations[0].classification == "Best"
        assert result.annotations[0].best_alternative is None

    def test_forced_move(self, mock_chess_engine):
        pgn = '[FEN "7k/8/8/8/8/8/8/K5R1 b - - 0 1"]\n[SetUp "1"]\n\n1... Kh7 *'
        starting_fen, moves = rules.decode_game(pgn)
        assert len(moves) == 1
        result = GameAnalyzer(engine=mock_chess_engine).analyze(pgn)
        assert result.annotations[0].classification == "Forced"
        assert result.annotations[0].best_alternative is None

    def test_does_not_close_borrowed_engine(self, mock_chess_engine):
        GameAnalyzer(engine=mock_chess_engine).analyze(_PGN)
        mock_chess_engine.close.assert_not_called()

    def test_invalid_pgn(self, mock_chess_engine):
        with pytest.raises(rules.NotationError):
            GameAnalyzer(engine=mock_chess_engine).analyze("1. e4 e5 2. Ke3")

    def test_result_loads_into_replay(self, mock_chess_engine):
        result = GameAnalyzer(engine=mock_chess_engine).analyze(_PGN)
        data = result.to_dict()
        replay = ReplayEngine.load(data["pgn"], data["annotations"], data["accuracies"])
        report = replay.aggregate()
        assert report.total_moves == 4
        assert report.accuracy == result.accuracies
        assert len(replay.evaluation_series()) == 4
