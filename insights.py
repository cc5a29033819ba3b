import re
from datetime import datetime
from typing import Optional

from sentiment import mood_breakdown
from timeutil import (
    format_display_date,
    format_display_time,
    format_hours,
    is_today,
    now_local,
    parse_timestamp,
)


PRODUCTIVE_TAGS = ("✅ Productive", "🧘 Mindful Use")
DISTRACTING_TAGS = ("😵 Overwhelmed", "⏳ Wasted Time", "🔥 Deep Dive")


def build_dashboard(
    entries: list[dict], user_name: str = "User", now: Optional[datetime] = None
) -> dict:
    """Everything the dashboard shows, derived from one user's entries.

    Pure: nothing is written back and the input list is not reordered.
    """
    now = now or now_local()
    stats = build_stats(entries)
    usage = build_usage(entries)
    stats["reflection_mood"] = mood_breakdown([e.get("reflection") or "" for e in entries])

    return {
        **stats,
        **usage,
        "today_entry": find_today_entry(entries, now),
        "history": [entry_card(entry, now) for entry in entries],
        "motivational_message": motivational_message(stats["productivity_ratio"]),
        "summary": build_summary(stats, user_name),
    }


def build_stats(entries: list[dict]) -> dict:
    if not entries:
        return {
            "total_entries": 0,
            "total_screen_time": 0,
            "total_screen_time_display": format_hours(0),
            "average_screen_time": 0,
            "average_screen_time_display": format_hours(0),
            "productivity_ratio": 0,
            "distraction_ratio": 0,
            "most_used_tag": "",
        }

    total_entries = len(entries)
    total_screen_time = sum(e.get("screen_time") or 0 for e in entries)
    average = _round_half_up(total_screen_time / total_entries)
    tag_counts = count_tags(entries)

    return {
        "total_entries": total_entries,
        "total_screen_time": total_screen_time,
        "total_screen_time_display": format_hours(total_screen_time),
        "average_screen_time": average,
        "average_screen_time_display": format_hours(average),
        "productivity_ratio": tag_ratio(entries, PRODUCTIVE_TAGS),
        "distraction_ratio": tag_ratio(entries, DISTRACTING_TAGS),
        "most_used_tag": most_used_tag(tag_counts),
    }


def build_usage(entries: list[dict]) -> dict:
    app_minutes: dict[str, int] = {}
    app_counts: dict[str, int] = {}
    for entry in entries:
        minutes = entry.get("screen_time") or 0
        for app in entry.get("apps") or []:
            app_minutes[app] = app_minutes.get(app, 0) + minutes
            app_counts[app] = app_counts.get(app, 0) + 1

    return {
        "app_minutes": app_minutes,
        "app_hours": {app: round(total / 60, 1) for app, total in app_minutes.items()},
        "app_counts": app_counts,
        "tag_counts": count_tags(entries),
    }


def count_tags(entries: list[dict]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for entry in entries:
        for tag in entry.get("tags") or []:
            counts[tag] = counts.get(tag, 0) + 1
    return counts


def most_used_tag(tag_counts: dict[str, int]) -> str:
    # max() keeps the first of equal counts, i.e. the tag seen first.
    if not tag_counts:
        return ""
    return max(tag_counts, key=tag_counts.get)


def tag_ratio(entries: list[dict], tag_set: tuple) -> int:
    """Percentage of entries carrying at least one tag from ``tag_set``."""
    if not entries:
        return 0
    wanted = {_tag_label(tag) for tag in tag_set} | set(tag_set)
    matching = sum(
        1
        for entry in entries
        if any(tag in wanted or _tag_label(tag) in wanted for tag in entry.get("tags") or [])
    )
    return _round_half_up(100 * matching / len(entries))


def find_today_entry(entries: list[dict], now: Optional[datetime] = None) -> Optional[dict]:
    todays = [e for e in entries if is_today(e.get("created_at") or "", now)]
    if not todays:
        return None
    return max(todays, key=lambda e: parse_timestamp(e["created_at"]))


def entry_card(entry: dict, now: Optional[datetime] = None) -> dict:
    created_at = entry.get("created_at") or ""
    today = is_today(created_at, now)
    return {
        "id": entry.get("id"),
        "is_today": today,
        "date_label": "Today" if today else format_display_date(created_at),
        "added_at": format_display_time(created_at),
        "screen_time_display": format_hours(entry.get("screen_time") or 0),
    }


def motivational_message(productivity_ratio: int) -> str:
    if productivity_ratio >= 70:
        return "Excellent! You're maintaining a healthy balance with technology."
    if productivity_ratio >= 50:
        return "Good progress! You're becoming more mindful of your digital habits."
    if productivity_ratio >= 30:
        return "Keep going! Every step towards mindful technology use counts."
    return "Focus on small changes. Try setting specific time limits for your most-used apps."


def build_summary(stats: dict, user_name: str = "User") -> list[str]:
    if not stats["total_entries"]:
        return [
            f"Welcome, {user_name}! Start your digital wellness journey by making your first entry.",
            "Track your apps, screen time, and emotions to unlock personalized insights.",
            "Your goal: build awareness of your digital habits and create a healthier "
            "relationship with technology.",
        ]

    lines = [
        f"{user_name}'s Digital Wellness Report",
        f"Progress: You've made {stats['total_entries']} entries and tracked "
        f"{stats['total_screen_time_display']} of screen time.",
        f"Average: You spend an average of {stats['average_screen_time_display']} per session.",
        f"Productivity: {stats['productivity_ratio']}% of your sessions are productive or mindful.",
    ]
    if stats["most_used_tag"]:
        lines.append(
            f"Most Common Feeling: \"{stats['most_used_tag']}\" - This is your most frequent "
            "emotional response to digital consumption."
        )
    mood = stats.get("reflection_mood")
    if mood:
        lines.append(_mood_line(mood))
    lines.append(motivational_message(stats["productivity_ratio"]))
    return lines


def _mood_line(mood: dict) -> str:
    dominant = max(mood, key=mood.get)
    if mood[dominant] == 0:
        return "Reflections: not enough written reflections to read a mood yet."
    return f"Reflections: your written reflections read mostly {dominant.lower()}."


def _tag_label(tag: str) -> str:
    # "✅ Productive" -> "productive"
    return re.sub(r"^[^\w]+", "", str(tag or "")).strip().lower()


def _round_half_up(value: float) -> int:
    return int(value + 0.5)
