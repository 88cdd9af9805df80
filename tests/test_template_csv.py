"""
Tests — Template CSV import.
"""

import csv
import io

import pytest

from diligence.core.exceptions import ValidationError
from diligence.services.template_csv import (
    CSV_COLUMNS,
    generate_csv_sample,
    import_template_from_csv,
    normalize_taxonomy_value,
    parse_template_csv,
)

HEADER = ",".join(CSV_COLUMNS)


def test_sample_has_expected_columns_and_parses_cleanly(taxonomy):
    sample = generate_csv_sample()

    rows = list(csv.reader(io.StringIO(sample)))
    assert rows[0] == CSV_COLUMNS
    parsed = parse_template_csv(sample, taxonomy)
    assert len(parsed["items"]) == len(rows) - 1
    assert parsed["warnings"] == []


@pytest.mark.parametrize("raw, expected", [
    ("legal", "legal"),
    ("LEGAL", "legal"),
    ("seller broker", "seller_broker"),
    ("Investment Committee", "investment_committee"),
    ("Seller / Broker", "seller_broker"),
])
def test_normalize_category(raw, expected, taxonomy):
    assert normalize_taxonomy_value("category", raw, taxonomy) == (expected, True)


def test_normalize_falls_back_for_unknown_values(taxonomy):
    assert normalize_taxonomy_value("phase", "whenever", taxonomy) == ("loi_signing", False)
    assert normalize_taxonomy_value("category", "", taxonomy) == ("legal", False)


def test_normalize_matches_custom_values(taxonomy):
    taxonomy.add_custom_value("category", "environmental")

    assert normalize_taxonomy_value("category", "Environmental", taxonomy) == ("environmental", True)


def test_parse_skips_blank_and_untitled_rows(taxonomy):
    content = "\n".join([
        HEADER,
        "Kickoff,,loi_signing,legal,0,",
        ",,,,,",
        ",orphan description,deep_dives,legal,5,",
        "Site visit,,deep_dives,operating_team,40,",
    ])

    parsed = parse_template_csv(content, taxonomy)

    assert [i["title"] for i in parsed["items"]] == ["Kickoff", "Site visit"]
    assert parsed["skipped"] == [{"row_num": 4, "reason": "missing title"}]


def test_parse_clamps_and_defaults_offsets(taxonomy):
    content = "\n".join([
        HEADER,
        "Too late,,loi_signing,legal,999,",
        "Negative,,loi_signing,legal,-4,",
        "Garbage,,loi_signing,legal,soon,",
    ])

    parsed = parse_template_csv(content, taxonomy)

    assert [i["days_from_start"] for i in parsed["items"]] == [180, 0, 0]


def test_parse_warns_on_fallback(taxonomy):
    content = f"{HEADER}\nOdd row,,someday,misc,1,\n"

    parsed = parse_template_csv(content, taxonomy)

    (item,) = parsed["items"]
    assert (item["phase"], item["category"]) == ("loi_signing", "legal")
    assert len(parsed["warnings"]) == 2
    assert "Row 2" in parsed["warnings"][0]


def test_parse_resolves_known_assignees_only(taxonomy, user):
    content = "\n".join([
        HEADER,
        f"Mine,,loi_signing,legal,0,{user.id}",
        "Nobody,,loi_signing,legal,0,4242",
        "Name,,loi_signing,legal,0,alice",
    ])

    parsed = parse_template_csv(content, taxonomy)

    assert [i["assigned_to"] for i in parsed["items"]] == [user.id, None, None]


def test_parse_handles_bytes_with_bom(taxonomy):
    content = ("\ufeff" + HEADER + "\nKickoff,,loi_signing,legal,0,\n").encode("utf-8")

    parsed = parse_template_csv(content, taxonomy)

    assert parsed["items"][0]["title"] == "Kickoff"


def test_parse_rejects_bytes_that_are_not_utf8(taxonomy):
    with pytest.raises(ValidationError) as exc_info:
        parse_template_csv(b"title,phase\n\xff\xfe bad,loi_signing\n", taxonomy)

    assert exc_info.value.details == {"csv": "not valid UTF-8 CSV"}


def test_parse_rejects_malformed_csv(taxonomy):
    oversized_field = "x" * (csv.field_size_limit() + 1)

    with pytest.raises(ValidationError) as exc_info:
        parse_template_csv(f"title\n{oversized_field}\n", taxonomy)

    assert exc_info.value.details == {"csv": "malformed CSV"}


def test_parse_reads_leading_integer_of_offset(taxonomy):
    content = "\n".join([
        HEADER,
        "Week one,,loi_signing,legal,7 days,",
        "Decimal,,loi_signing,legal,5.0,",
        "Padded,,loi_signing,legal, 12 ,",
    ])

    parsed = parse_template_csv(content, taxonomy)

    assert [i["days_from_start"] for i in parsed["items"]] == [7, 5, 12]


def test_parse_requires_title_column(taxonomy):
    with pytest.raises(ValidationError):
        parse_template_csv("name,phase\nx,loi_signing\n", taxonomy)


def test_parse_rejects_empty_content(taxonomy):
    with pytest.raises(ValidationError):
        parse_template_csv("   ", taxonomy)


def test_import_creates_template(taxonomy, user):
    result = import_template_from_csv(
        "Imported DD", "from CSV", generate_csv_sample(),
        created_by=user.id, is_default=True, taxonomy=taxonomy,
    )

    template = result["template"]
    assert template["name"] == "Imported DD"
    assert template["is_default"] is True
    assert template["created_by"] == user.id
    assert result["item_count"] == template["item_count"] == len(template["items"])
    assert result["skipped"] == []


def test_import_without_rows_is_rejected(taxonomy):
    with pytest.raises(ValidationError):
        import_template_from_csv("Empty", None, HEADER + "\n", taxonomy=taxonomy)
