# dealpipe/domain/deal_package.py
from __future__ import annotations

import html
import re
from typing import Any

DISCLAIMER = (
    "Information provided is preliminary and subject to verification. "
    "No guarantees are made regarding property condition, pricing, or availability. "
    "All information must be independently verified before making any purchase decision."
)

PROHIBITED_PHRASES = (
    "guarantee",
    "guaranteed",
    "definitely",
    "final offer",
    "promise",
    "promised",
    "assure",
    "assured",
    "certain",
    "certainly",
)


def mask_street_number(address: str | None) -> str:
    """'123 Main St' -> '*** Main St'"""
    if not address:
        return "Address TBD"
    return re.sub(r"^\d+", "***", address)


def _grade_value(lead: Any) -> str:
    override = lead.score_override or {}
    g = override.get("grade") or lead.grade
    return getattr(g, "value", g) or "Dead"


def format_deal_package(lead: Any, *, redacted: bool = False) -> dict[str, Any]:
    address = lead.property_address
    shown = mask_street_number(address) if redacted else (address or "Address TBD")
    tail = f"{lead.city or ''}, {lead.state or ''} {lead.zip_code or ''}".strip()
    pkg: dict[str, Any] = {
        "address": shown,
        "city": lead.city or "",
        "state": lead.state or "",
        "zip": lead.zip_code or "",
        "full_address": f"{shown}, {tail}".strip(),
        "property_type": lead.property_type or "Unknown",
        "beds": lead.beds,
        "baths": lead.baths,
        "sqft": lead.sqft,
        "year_built": lead.year_built,
        "condition_tier": lead.condition_tier or "unknown",
        "asking_price": lead.asking_price,
        "arv": lead.arv,
        "grade": _grade_value(lead),
        "score": lead.score or 0,
        "buy_box_label": lead.buy_box_label,
        "access": "Contact for access",
        "next_steps": "Contact closer for full details and viewing",
        "disclaimer": DISCLAIMER,
        "lead_id": lead.id,
        "market_key": lead.market_key,
    }
    if redacted:
        pkg["redacted"] = True
        pkg["note"] = "Full address and additional details available upon interest confirmation"
    return pkg


def format_deal_package_text(lead: Any, *, redacted: bool = False) -> str:
    pkg = format_deal_package(lead, redacted=redacted)
    lines = ["NEW DEAL OPPORTUNITY", "", pkg["full_address"]]

    specs = pkg["property_type"]
    if pkg["beds"]:
        specs += f" | {pkg['beds']} bed"
    if pkg["baths"]:
        specs += f" | {pkg['baths']} bath"
    if pkg["sqft"]:
        specs += f" | {pkg['sqft']} sqft"
    lines.append(specs)

    if pkg["year_built"]:
        lines.append(f"Built: {pkg['year_built']}")
    lines.append(f"Condition: {pkg['condition_tier']}")
    if pkg["asking_price"]:
        lines.append(f"Asking: ${pkg['asking_price']:,.0f}")
    if pkg["arv"]:
        lines.append(f"ARV: ${pkg['arv']:,.0f}")
    if pkg["grade"] and pkg["grade"] != "Dead":
        lines.append(f"Grade: {pkg['grade']} (Score: {pkg['score']:g})")
    if pkg["buy_box_label"]:
        lines.append(f"Buy Box: {pkg['buy_box_label']}")

    lines += ["", pkg["access"], "", pkg["disclaimer"]]
    if redacted:
        lines += ["", "Full details available upon interest confirmation"]
    return "\n".join(lines)


def format_deal_package_html(lead: Any, *, redacted: bool = False) -> str:
    pkg = format_deal_package(lead, redacted=redacted)
    e = html.escape
    parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        "<h2>New Deal Opportunity</h2>",
        f"<p><strong>Address:</strong> {e(pkg['full_address'])}</p>",
    ]
    specs = f"<p><strong>Property Type:</strong> {e(str(pkg['property_type']))}"
    for key, label in (("beds", "Beds"), ("baths", "Baths"), ("sqft", "Sqft")):
        if pkg[key]:
            specs += f" | <strong>{label}:</strong> {pkg[key]}"
    parts.append(specs + "</p>")
    if pkg["year_built"]:
        parts.append(f"<p><strong>Year Built:</strong> {pkg['year_built']}</p>")
    parts.append(f"<p><strong>Condition:</strong> {e(str(pkg['condition_tier']))}</p>")
    if pkg["asking_price"]:
        parts.append(f"<p><strong>Asking Price:</strong> ${pkg['asking_price']:,.0f}</p>")
    if pkg["arv"]:
        parts.append(f"<p><strong>ARV:</strong> ${pkg['arv']:,.0f}</p>")
    if pkg["grade"] and pkg["grade"] != "Dead":
        parts.append(f"<p><strong>Grade:</strong> {pkg['grade']} (Score: {pkg['score']:g})</p>")
    parts.append(f"<p>{e(pkg['access'])}</p>")
    parts.append(f'<p style="font-size: 12px; color: #666;">{e(pkg["disclaimer"])}</p>')
    parts.append("</div>")
    return "".join(parts)


def render_template(content: str, lead: Any, *, text: str, html_body: str) -> str:
    return (
        content.replace("{{dealPackage}}", text)
        .replace("{{dealPackageHTML}}", html_body)
        .replace("{{leadId}}", str(lead.id))
        .replace("{{address}}", lead.property_address or "Address TBD")
    )


def find_prohibited_phrases(text: str | None) -> list[str]:
    if not text:
        return []
    lowered = text.lower()
    return [p for p in PROHIBITED_PHRASES if re.search(rf"\b{re.escape(p)}\b", lowered)]
