#!/usr/bin/env python3
"""Export game history and replay reports as markdown."""

import json
import sys
from pathlib import Path

from pgchess.history import HistoryStore
from pgchess.models import BLACK, WHITE
from pgchess.replay import ReplayEngine, ReplayLoadError
from pgchess.settings import load_settings

# Tags worth listing in a report, in display order
_REPORT_TAGS = [
    "Brilliant", "Great", "Best", "Excellent", "Good", "Book",
    "Inaccuracy", "Mistake", "Blunder",
]
_KEY_MISTAKE_TAGS = {"Mistake", "Blunder", "Missed Win"}


def export_history(store: HistoryStore | None = None) -> str:
    """Export the saved game history as markdown."""
    store = store or HistoryStore(load_settings().history_path)
    records = store.load()
    if not records:
        return "No games found. Play some games first!"

    lines = ["# Game History", ""]
    for game_num, record in enumerate(records, 1):
        date = record.date[:10] if len(record.date) > 10 else record.date
        lines.append(f"## Game {game_num} - {date}")
        lines.append(f"- White: {record.white}")
        lines.append(f"- Black: {record.black}")
        lines.append(f"- Result: {record.result}")
        lines.append("")

    return "\n".join(lines)


def export_replay_report(replay: ReplayEngine) -> str:
    """Export a replay's aggregate statistics and key mistakes as markdown."""
    report = replay.aggregate()
    lines = ["# Game Report", "", f"- Total moves: {report.total_moves}", ""]

    lines.append("## Accuracy")
    for color in (WHITE, BLACK):
        value = report.accuracy.get(color)
        shown = f"{value:.1f}%" if value is not None else "n/a"
        lines.append(f"- {color.capitalize()}: {shown}")
    lines.append("")

    lines.append("## Move Quality")
    lines.append("| Classification | White | Black |")
    lines.append("|---|---|---|")
    for tag in _REPORT_TAGS:
        white = report.counts[WHITE].get(tag, 0)
        black = report.counts[BLACK].get(tag, 0)
        if white or black:
            lines.append(f"| {tag} | {white} | {black} |")
    lines.append("")

    mistakes = [a for a in replay.annotations if a.classification in _KEY_MISTAKE_TAGS]
    if mistakes:
        lines.append("## Key Mistakes")
        for a in mistakes[:5]:
            move_no = a.ply // 2 + 1
            prefix = f"{move_no}." if a.side == WHITE else f"{move_no}..."
            better = f" (better: {a.best_alternative})" if a.best_alternative else ""
            lines.append(f"- {prefix} {a.san}: {a.classification}{better}")
        lines.append("")

    return "\n".join(lines)


def main() -> int:
    usage = "Usage: python -m pgchess.export [history|report GAME.pgn ANNOTATIONS.json]"
    if len(sys.argv) < 2:
        print(usage)
        return 1

    command = sys.argv[1].lower()

    if command == "history":
        print(export_history())
    elif command == "report" and len(sys.argv) >= 4:
        pgn = Path(sys.argv[2]).read_text(encoding="utf-8")
        data = json.loads(Path(sys.argv[3]).read_text(encoding="utf-8"))
        if isinstance(data, list):
            data = {"annotations": data}
        try:
            replay = ReplayEngine.load(pgn, data["annotations"], data.get("accuracies"))
        except ReplayLoadError as exc:
            print(f"Could not load game: {exc}", file=sys.stderr)
            return 1
        print(export_replay_report(replay))
    else:
        print(f"Unknown command: {command}")
        print(usage)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
