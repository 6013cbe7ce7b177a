#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for citation string formatting.
"""

from citations import (
    apa_authors,
    citations_for_paper,
    format_citations,
    initials,
    last_first,
    oxford_join,
    paper_venue,
    paper_year,
)

AUTHORS = ["Ana Cruz", "Ben Reyes", "Carl Santos"]


def test_name_helpers():
    assert oxford_join(["A"]) == "A"
    assert oxford_join(["A", "B"]) == "A and B"
    assert oxford_join(["A", "B", "C"]) == "A, B, and C"
    assert initials("Ana Maria Cruz") == "Ana M. C."
    assert last_first("Ana Maria Cruz") == "Cruz, Ana Maria"
    assert last_first("Plato") == "Plato"
    assert apa_authors(["Ana Maria Cruz", "Ben Reyes"]) == "Cruz, A. M., Reyes, B."


def test_format_citations_all_styles():
    cites = format_citations(AUTHORS, "Early Rounds", "2021", "J Ward Med")
    assert cites["MLA"] == 'Ana Cruz, Ben Reyes, and Carl Santos. "Early Rounds." J Ward Med, 2021.'
    assert cites["APA"] == "Cruz, A., Reyes, B., Santos, C. (2021). Early Rounds. J Ward Med."
    assert cites["Chicago"] == 'Ana Cruz, Ben Reyes, and Carl Santos. "Early Rounds." J Ward Med (2021).'
    assert cites["Harvard"] == "Ana C., Ben R., and Carl S. (2021) Early Rounds. J Ward Med."
    assert cites["Vancouver"] == "Cruz Ana, Reyes Ben, Santos Carl. Early Rounds. J Ward Med. 2021."


def test_apa_truncates_long_author_lists():
    authors = [f"Author{i} Person{i}" for i in range(7)]
    apa = format_citations(authors, "T", "2020", "V")["APA"]
    assert apa.endswith(", et al. (2020). T. V.")
    assert "Person6" not in apa


def test_blank_authors_are_dropped():
    cites = format_citations(["", "  ", "Ana Cruz"], "T", "", "")
    assert cites["Chicago"] == 'Ana Cruz. "T."  ().'


def test_paper_year_and_venue():
    assert paper_year({"publication_date": "2021-03-05"}) == "2021"
    assert paper_year({"publication_date": ""}) == ""
    assert paper_venue({"fields_data": {"journalname": "J Med", "publisher": "P"}}) == "J Med"
    assert paper_venue({"fields_data": {}}) == ""


def test_citations_for_paper_flips_display_names():
    paper = {
        "title": "Early Rounds",
        "author_display_names": ["Cruz, Ana M.", "Ben Reyes"],
        "manual_authors": ["Ignored Because Display Names Exist"],
        "publication_date": "2021-03-05",
        "fields_data": {"journalname": "J Ward Med"},
    }
    cites = citations_for_paper(paper)
    assert cites["MLA"] == 'Ana M. Cruz and Ben Reyes. "Early Rounds." J Ward Med, 2021.'


def test_citations_for_paper_falls_back_to_manual_authors():
    paper = {"title": "T", "author_display_names": [], "manual_authors": ["Dee Lim"]}
    assert citations_for_paper(paper)["Vancouver"] == "Lim Dee. T. . ."
