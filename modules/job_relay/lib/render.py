from __future__ import annotations

from typing import Any

from .models import CanonicalRecord, Notification

_ROLE_LABELS = {"intern": "Internship", "new_grad": "New Grad"}
_CATEGORY_LABELS = {
    "software_engineering": "Software Engineering",
    "data_analysis": "Data Analysis",
    "data_science_engineer": "Data Science / ML Engineering",
}

# Webhook limits (Discord): 10 embeds per message, 256-char titles.
# Descriptions are clipped far below the 4096-char cap to keep batches short.
MAX_EMBEDS = 10
_TITLE_MAX = 256
_DESCRIPTION_MAX = 300


def summarize(record: CanonicalRecord) -> dict[str, str]:
    """The per-record summary carried by batch notifications."""
    return {
        "title": record.title,
        "url": record.url,
        "company": record.company,
        "location": record.location,
        "posted_date": record.posted_date,
        "source": record.source,
        "id_prefix": record.id_prefix,
    }


def bucket_label(role: str, category: str) -> str:
    return f"{_ROLE_LABELS.get(role, role)} · {_CATEGORY_LABELS.get(category, category)}"


def header_text(n: Notification) -> str:
    noun = "job" if n.count == 1 else "jobs"
    return f"**{n.count} new {noun}**: {bucket_label(n.role, n.category)}"


def to_text(n: Notification) -> str:
    """Plain-text rendering (log sink, CLI previews)."""
    if n.kind == "header":
        return header_text(n)
    lines = [f"[{bucket_label(n.role, n.category)}] batch {n.index + 1}"]
    for rec in n.records:
        s = summarize(rec)
        where = " | ".join(x for x in (s["company"], s["location"]) if x)
        parts = [f"- {s['title']}"]
        if where:
            parts.append(f"({where})")
        if s["url"]:
            parts.append(s["url"])
        parts.append(f"[{s['source']} {s['id_prefix']}]")
        lines.append(" ".join(parts))
    return "\n".join(lines)


def to_webhook_payloads(n: Notification) -> list[dict[str, Any]]:
    """
    Build webhook JSON bodies. Headers are one plain message; batches are one
    embed per record, split into several bodies when a batch is larger than
    MAX_EMBEDS.
    """
    if n.kind == "header":
        return [{"content": header_text(n), "allowed_mentions": {"parse": []}}]
    embeds = [_embed(rec) for rec in n.records]
    return [
        {"embeds": embeds[i : i + MAX_EMBEDS], "allowed_mentions": {"parse": []}}
        for i in range(0, len(embeds), MAX_EMBEDS)
    ]


def _embed(rec: CanonicalRecord) -> dict[str, Any]:
    s = summarize(rec)
    fields = [
        {"name": "Company", "value": s["company"] or "n/a", "inline": True},
        {"name": "Location", "value": s["location"] or "n/a", "inline": True},
        {"name": "Posted", "value": s["posted_date"] or "n/a", "inline": True},
    ]
    embed: dict[str, Any] = {
        "title": _clip(s["title"] or "(no title)", _TITLE_MAX),
        "fields": fields,
        "footer": {"text": f"{s['source']} · {s['id_prefix']}"},
    }
    if s["url"]:
        embed["url"] = s["url"]
    if rec.description:
        embed["description"] = _clip(rec.description, _DESCRIPTION_MAX)
    return embed


def _clip(s: str, limit: int) -> str:
    return s if len(s) <= limit else s[: limit - 1] + "…"
