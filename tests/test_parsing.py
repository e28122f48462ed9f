"""
Test Suite for Text Processing
==============================
Models, question segmentation, metadata classification and the exam
registry. Nothing here touches the network or the database.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pyq_ingest.classifier import MetadataClassifier
from pyq_ingest.exams import EXAM_PROFILES, UPSC, get_profile
from pyq_ingest.models import (
    CandidateDocument,
    DocumentOutcome,
    ExtractionMethod,
    Level,
    OutcomeStatus,
    QuestionRecord,
    RunSummary,
    SkipReason,
    make_match_key,
    question_prefix,
)
from pyq_ingest.rules import (
    GS2_THEMES,
    MERGED_THEMES,
    PRELIMS_THEMES,
    first_match,
    is_government_host,
    keyword_pattern,
    theme_rules_for,
)
from pyq_ingest.segmenter import QuestionSegmenter


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestQuestionRecord:
    """Test QuestionRecord validation."""

    def test_valid_record(self):
        r = QuestionRecord(
            exam="upsc",
            level=Level.MAINS,
            paper="GS-2",
            year=2023,
            question="  Discuss the   role of the Finance Commission?  ",
        )
        assert r.exam == "UPSC"
        assert r.question == "Discuss the role of the Finance Commission?"
        assert r.verified is False
        assert r.created_at

    def test_too_short_rejected(self):
        with pytest.raises(ValidationError):
            QuestionRecord(exam="UPSC", question="Why?")

    def test_too_long_rejected(self):
        with pytest.raises(ValidationError):
            QuestionRecord(exam="UPSC", question="Explain " * 80 + "?")

    def test_question_mark_required(self):
        with pytest.raises(ValidationError):
            QuestionRecord(exam="UPSC", question="Discuss the role of the Finance Commission.")

    def test_empty_exam_rejected(self):
        with pytest.raises(ValidationError):
            QuestionRecord(exam="  ", question="Discuss the role of the Finance Commission?")

    def test_topic_tags_are_a_set(self):
        r = QuestionRecord(
            exam="UPSC",
            question="Discuss the role of the Finance Commission?",
            topic_tags=["Federalism", "Federalism", " ", "Polity"],
        )
        assert r.topic_tags == ["Federalism", "Polity"]


class TestMatchKey:
    """Test the dedup key."""

    def test_marker_and_case_ignored(self):
        a = make_match_key("upsc", 2023, "1. Discuss the role of the Finance Commission?")
        b = make_match_key("UPSC", 2023, "Q.4  discuss the ROLE of the finance commission ?")
        assert a == b

    def test_year_distinguishes(self):
        q = "Discuss the role of the Finance Commission?"
        assert make_match_key("UPSC", 2022, q) != make_match_key("UPSC", 2023, q)

    def test_exam_distinguishes(self):
        q = "Discuss the role of the Finance Commission?"
        assert make_match_key("UPSC", 2023, q) != make_match_key("TNPSC", 2023, q)

    def test_prefix_is_truncated(self):
        prefix = question_prefix("(a) " + "federalism " * 20 + "?")
        assert len(prefix) <= 50
        assert prefix.startswith("federalism federalism")

    def test_record_exposes_match_key(self):
        r = QuestionRecord(exam="UPSC", year=2023, question="1. Discuss the role of the Finance Commission?")
        assert r.match_key == make_match_key("UPSC", 2023, r.question)
        assert r.match_key.startswith("UPSC|2023|discuss the role")


class TestRunSummary:
    """Test RunSummary aggregation."""

    def test_record_counts(self):
        s = RunSummary(exam="UPSC")
        s.record(DocumentOutcome(
            url="a", status=OutcomeStatus.PROCESSED,
            extraction_method=ExtractionMethod.NATIVE, inserted=3, merged=1, unclassified=2,
        ))
        s.record(DocumentOutcome(url="b", status=OutcomeStatus.SKIPPED, reason=SkipReason.NOT_FOUND))
        s.record(DocumentOutcome(url="c", status=OutcomeStatus.SKIPPED, reason=SkipReason.NOT_FOUND))
        s.record(DocumentOutcome(url="d", status=OutcomeStatus.ERRORED, error="boom"))

        assert s.documents_total == 4
        assert s.documents_processed == 1
        assert s.documents_skipped == 2
        assert s.documents_errored == 1
        assert s.questions_inserted == 3
        assert s.questions_merged == 1
        assert s.questions_persisted == 4
        assert s.questions_unclassified == 2
        assert s.skip_reasons == {"not found": 2}
        assert s.extraction_methods == {"native": 1}

    def test_serialization(self):
        s = RunSummary(exam="UPSC")
        data = s.model_dump(mode="json")
        assert data["exam"] == "UPSC"
        assert data["questions_persisted"] == 0


class TestCandidateDocument:
    """Test CandidateDocument helpers."""

    def test_filename(self):
        doc = CandidateDocument(url="https://upsc.gov.in/sites/default/files/QP-CSM-GS-2-2023.pdf?x=1#p2")
        assert doc.filename == "QP-CSM-GS-2-2023.pdf"
        assert doc.level_hint == Level.MAINS


# ═══════════════════════════════════════════════════════════════════════════════
# SEGMENTER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestQuestionSegmenter:
    """Test the question segmentation state machine."""

    def test_inline_numbered_questions(self):
        seg = QuestionSegmenter()
        candidates = seg.split_candidates("1. What is X? 2. What is Y?")
        assert candidates == ["1. What is X?", "2. What is Y?"]

    def test_short_candidate_dropped(self):
        seg = QuestionSegmenter()
        assert seg.split_candidates("Why? ") == ["Why?"]
        assert seg.segment("Why? ") == []

    def test_multiline_paper(self):
        text = "\n".join([
            "UPSC Civil Services Mains 2023",
            "General Studies Paper II",
            "1. Discuss the role of the Finance Commission in",
            "fiscal federalism. How far has it succeeded?",
            "2. Examine the powers of the Governor under the Constitution?",
            "Page 3 of 10",
            "3. Critically analyse the working of Panchayati Raj institutions. Why do they fail?",
        ])
        questions = QuestionSegmenter().segment(text)

        assert questions == [
            "1. Discuss the role of the Finance Commission in fiscal federalism. How far has it succeeded?",
            "2. Examine the powers of the Governor under the Constitution?",
            "3. Critically analyse the working of Panchayati Raj institutions. Why do they fail?",
        ]

    def test_marker_force_closes_buffer(self):
        text = "\n".join([
            "1. What is the significance of the Basel norms? Discuss",
            "with suitable examples.",
            "2. Explain inflation targeting as practised in India?",
        ])
        questions = QuestionSegmenter().segment(text)
        assert questions == [
            "1. What is the significance of the Basel norms? Discuss with suitable examples.",
            "2. Explain inflation targeting as practised in India?",
        ]

    def test_marker_discards_buffer_without_question_mark(self):
        text = "Time allowed: three hours\nMaximum marks: 250\n1. Why is the monsoon so variable?"
        assert QuestionSegmenter().segment(text) == ["1. Why is the monsoon so variable?"]

    def test_sub_parts_are_independent(self):
        text = "(a) What is the role of NITI Aayog?\n(b) How does it differ from the Planning Commission?"
        assert QuestionSegmenter().segment(text) == [
            "(a) What is the role of NITI Aayog?",
            "(b) How does it differ from the Planning Commission?",
        ]

    def test_noise_lines_ignored(self):
        text = "1. Discuss the impact of\nP.T.O.\n12\nhttps://upsc.gov.in\nglobalisation on Indian women?"
        assert QuestionSegmenter().segment(text) == [
            "1. Discuss the impact of globalisation on Indian women?"
        ]

    def test_oversized_buffer_split(self):
        q1 = "What explains the sustained growth of services exports from India in recent decades"
        filler = "Context " * 60
        candidates = QuestionSegmenter().split_candidates(f"{q1}? {filler}")
        assert candidates == [f"{q1}?"]

    def test_end_of_input_flush(self):
        text = "1. Is the monsoon getting more erratic? Comment"
        assert QuestionSegmenter().segment(text) == ["1. Is the monsoon getting more erratic? Comment"]

    def test_boilerplate_dropped(self):
        text = "Page 2 continued on next sheet?\nSee overleaf for the instructions?\nRefer to the map given below?"
        assert QuestionSegmenter().segment(text) == []

    def test_exact_duplicates_dropped(self):
        text = "1. Why is the monsoon so variable?\n1. Why is the monsoon so variable?"
        assert QuestionSegmenter().segment(text) == ["1. Why is the monsoon so variable?"]

    def test_every_question_is_well_formed(self):
        text = "\n".join([
            "Answer all questions",
            "1. Why?",
            "2. What is the role of the Election Commission in India?",
            "3) " + "Explain this in detail " * 30 + "?",
            "Q.4 Is secularism under threat in India?",
        ])
        for q in QuestionSegmenter().segment(text):
            assert 15 <= len(q) <= 500
            assert "?" in q

    def test_empty_input(self):
        assert QuestionSegmenter().segment("") == []

    def test_reusable(self):
        seg = QuestionSegmenter()
        seg.segment("1. Why is the monsoon so variable?")
        assert seg.segment("2. What drives urban heat islands?") == ["2. What drives urban heat islands?"]


# ═══════════════════════════════════════════════════════════════════════════════
# RULE TABLE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestRules:
    """Test declarative rule tables."""

    def test_keyword_is_word_bounded(self):
        art = keyword_pattern("art")
        assert art.search("Indian art forms")
        assert not art.search("the partition of Bengal")

    def test_multiword_keyword(self):
        assert keyword_pattern("civil services").search("Civil-Services-Mains-2023.pdf")

    def test_first_match_prefers_earlier_text(self):
        assert first_match(GS2_THEMES, ["federalism", "judiciary"]) == "Federalism"
        assert first_match(GS2_THEMES, [None, "", "judiciary"]) == "Judiciary"
        assert first_match(GS2_THEMES, ["nothing here"]) is None

    def test_theme_table_selection(self):
        assert theme_rules_for("GS-2", Level.MAINS) is GS2_THEMES
        assert theme_rules_for("CSAT", Level.PRELIMS) is PRELIMS_THEMES
        assert theme_rules_for(None, Level.MAINS) is MERGED_THEMES
        assert theme_rules_for("Essay", None) is MERGED_THEMES

    def test_government_hosts(self):
        assert is_government_host("upsc.gov.in")
        assert is_government_host("www.upsc.gov.in")
        assert is_government_host("bpsc.bih.nic.in")
        assert is_government_host("data.gov.uk")
        assert not is_government_host("example-blog.com")
        assert not is_government_host("upsc.gov.in.evil.com")
        assert not is_government_host(None)


# ═══════════════════════════════════════════════════════════════════════════════
# CLASSIFIER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestMetadataClassifier:
    """Test year, paper, theme and trust inference."""

    def _doc(self, url: str, **kwargs) -> CandidateDocument:
        return CandidateDocument(url=url, **kwargs)

    def test_gs2_filename(self):
        c = MetadataClassifier().classify(
            "Examine the working of cooperative federalism in India?",
            self._doc("https://upsc.gov.in/papers/GS-2-2023.pdf"),
            Level.MAINS,
        )
        assert c.paper == "GS-2"
        assert c.year == 2023
        assert c.theme == "Federalism"
        assert c.verified is True

    def test_unverified_host(self):
        c = MetadataClassifier().classify(
            "Examine the working of cooperative federalism in India?",
            self._doc("https://example-blog.com/GS-2-2023.pdf"),
            Level.MAINS,
        )
        assert c.verified is False

    @pytest.mark.parametrize("filename,level,expected", [
        ("CSAT-2019.pdf", Level.PRELIMS, "CSAT"),
        ("prelims-paper-2-2019.pdf", Level.PRELIMS, "CSAT"),
        ("prelims-paper-1.pdf", Level.PRELIMS, "GS Paper I"),
        ("prelims-2019.pdf", Level.PRELIMS, "GS Paper I"),
        ("Essay-2021.pdf", Level.MAINS, "Essay"),
        ("mains_gs1_2018.pdf", Level.MAINS, "GS-1"),
        ("GS-III-2020.pdf", Level.MAINS, "GS-3"),
        ("ethics-2017.pdf", Level.MAINS, "GS-4"),
        ("sociology-paper-1.pdf", Level.MAINS, "Sociology"),
        ("mains-2019.pdf", Level.MAINS, None),
    ])
    def test_paper_from_filename(self, filename, level, expected):
        paper = MetadataClassifier().classify_paper(
            self._doc(f"https://upsc.gov.in/{filename}"), level
        )
        assert paper == expected

    def test_filename_beats_body(self):
        paper = MetadataClassifier().classify_paper(
            self._doc("https://upsc.gov.in/gs-1-2020.pdf"),
            Level.MAINS,
            "GENERAL STUDIES PAPER II",
        )
        assert paper == "GS-1"

    def test_body_head_used(self):
        paper = MetadataClassifier().classify_paper(
            self._doc("https://upsc.gov.in/qp.pdf"),
            Level.MAINS,
            "UPSC Mains 2020\nGENERAL STUDIES (PAPER-III)\nTime allowed: 3 hours",
        )
        assert paper == "GS-3"

    def test_body_beyond_head_ignored(self):
        paper = MetadataClassifier().classify_paper(
            self._doc("https://upsc.gov.in/qp.pdf"),
            Level.MAINS,
            "x" * 2000 + " GS-3",
        )
        assert paper is None

    def test_paper_hint_fallback(self):
        paper = MetadataClassifier().classify_paper(
            self._doc("https://upsc.gov.in/qp-2021.pdf", paper_hint="GS-3"),
            Level.MAINS,
        )
        assert paper == "GS-3"

    def test_paper_override_wins(self):
        paper = MetadataClassifier(paper_override="GS-4").classify_paper(
            self._doc("https://upsc.gov.in/GS-2-2023.pdf"), Level.MAINS
        )
        assert paper == "GS-4"

    def test_year_order(self):
        clf = MetadataClassifier()
        assert clf.extract_year("GS-2-2023.pdf", "Mains 2019") == 2023
        assert clf.extract_year("qp.pdf", "Mains 2019") == 2019
        assert clf.extract_year("qp.pdf", None, "Mains 2019") == 2019

    def test_question_year_ignored(self):
        clf = MetadataClassifier()
        doc = self._doc("https://upsc.gov.in/QP-CSM-23-GS-3-230923.pdf")
        text = "UPSC Civil Services Mains 2023\nGENERAL STUDIES PAPER III"

        reforms = clf.classify("Evaluate the economic reforms of 1991?", doc, Level.MAINS, text)
        monsoon = clf.classify("How has climate change affected the monsoon?", doc, Level.MAINS, text)

        assert clf.document_year(doc, text) == 2023
        assert reforms.year == monsoon.year == 2023

    def test_precomputed_year_used(self):
        c = MetadataClassifier().classify(
            "What did the 1991 reforms change?",
            self._doc("https://upsc.gov.in/qp.pdf"),
            Level.MAINS,
            "Mains 2018",
            year=2019,
        )
        assert c.year == 2019

    def test_year_out_of_range(self):
        clf = MetadataClassifier()
        assert clf.extract_year("qp.pdf", "Assess the revolt of 1857 and its legacy?") is None
        assert clf.extract_year("qp.pdf", "Is Viksit Bharat 2047 achievable?") is None
        assert clf.extract_year("qp-12345.pdf") is None

    def test_year_fallback(self):
        clf = MetadataClassifier(year_fallback=2020)
        assert clf.extract_year("qp.pdf", "Assess the revolt of 1857 and its legacy?") == 2020

    def test_theme_by_paper(self):
        clf = MetadataClassifier()
        assert clf.infer_theme(
            "Discuss the role of monetary policy in controlling inflation?", "GS-3", Level.MAINS
        ) == "Monetary Policy"
        assert clf.infer_theme(
            "Which of the following best tests reasoning ability?", "CSAT", Level.PRELIMS
        ) == "Logical Reasoning"

    def test_theme_word_bounded(self):
        assert MetadataClassifier().infer_theme(
            "Comment on the partition of Bengal?", "GS-1", Level.MAINS
        ) is None

    def test_theme_merged_table(self):
        assert MetadataClassifier().infer_theme(
            "How has climate change affected Himalayan glaciers?", None, Level.MAINS
        ) == "Climate and Geography"

    def test_theme_override(self):
        assert MetadataClassifier(theme_override="MSP").infer_theme(
            "Comment on the partition of Bengal?", "GS-1", Level.MAINS
        ) == "MSP"


# ═══════════════════════════════════════════════════════════════════════════════
# EXAM REGISTRY TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestExamProfiles:
    """Test the exam registry and family filter."""

    def test_lookup_case_insensitive(self):
        assert get_profile("upsc") is UPSC
        assert get_profile("Kerala  PSC").code == "KERALA PSC"

    def test_unknown_code_is_permissive(self):
        p = get_profile("xyz board")
        assert p.code == "XYZ BOARD"
        assert p.listing_pages == []
        assert p.includes(["anything.pdf"])
        assert not p.excludes(["NDA-2023.pdf"])

    def test_empty_code_rejected(self):
        with pytest.raises(ValueError):
            get_profile("  ")

    def test_upsc_family(self):
        assert UPSC.includes(["CSE-GS-2-2023.pdf"])
        assert UPSC.includes(["QP-2023.pdf", "Civil Services (Main) Examination"])
        assert not UPSC.includes(["cdse-2023.pdf"])
        assert UPSC.excludes(["cdse-2023.pdf"])
        assert UPSC.excludes(["NDA-NA-II-2023.pdf"])
        assert not UPSC.excludes(["CSE-Mains-GS-2-2023.pdf", "General Studies Paper II"])

    def test_registry_has_state_pscs(self):
        for code in ("TNPSC", "MPSC", "BPSC", "WBPSC", "PPSC", "GPSC", "KPSC",
                     "KERALA PSC", "TSPSC", "APPSC", "RPSC", "UPPSC", "MPPSC", "HPSC"):
            assert code in EXAM_PROFILES
            assert EXAM_PROFILES[code].listing_pages
