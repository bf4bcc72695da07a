"""
Tests for the CalCareers search results parser.
"""

from src.CA.models import NOT_SPECIFIED
from src.CA.parser import (
    PageInspector,
    block_text,
    extract_container_fields,
    extract_job_control,
    extract_job_records,
    has_job_listings,
    parse_total_jobs,
)


def test_extracts_every_listing_with_labeled_fields(record_factory, results_page):
    records = [record_factory(1), record_factory(2, telework="Telework Only")]
    html = results_page(records, pages=[1, 2], current=1, total_jobs=2)

    parsed = extract_job_records(html)

    assert [r.job_control for r in parsed] == ["400001", "400002"]
    first = parsed[0]
    assert first.link_title == "ANALYST 1"
    assert first.working_title == "Analyst 1"
    assert first.department == "Department of Water Resources"
    assert first.salary_range == "$5,000.00 - $6,500.00"
    assert first.work_type_schedule == "Permanent Fulltime"
    assert first.publish_date == "8/14/2025"
    assert first.filing_deadline == "9/1/2025"
    assert parsed[1].telework == "Telework Only"


def test_job_posting_url_is_made_absolute(record_factory, results_page):
    parsed = extract_job_records(results_page([record_factory(7)]))

    assert parsed[0].job_posting_url == (
        "https://calcareers.ca.gov/CalHrPublic/Jobs/JobPosting.aspx?JobControlId=400007"
    )


def test_missing_salary_label_defaults_to_not_specified(record_factory, results_page):
    html = results_page([record_factory(3, salary_range=NOT_SPECIFIED)])

    parsed = extract_job_records(html)

    assert len(parsed) == 1
    assert parsed[0].job_control == "400003"
    assert parsed[0].salary_range == NOT_SPECIFIED
    assert parsed[0].department == "Department of Water Resources"


def test_listing_without_labels_still_emitted():
    html = """
    <html><body><div id="results">
      <div><a href="JobPosting.aspx?JobControlId=123456">STAFF SERVICES ANALYST</a></div>
    </div></body></html>
    """

    parsed = extract_job_records(html)

    assert len(parsed) == 1
    record = parsed[0]
    assert record.job_control == "123456"
    assert record.working_title == "STAFF SERVICES ANALYST"
    assert record.department == NOT_SPECIFIED
    assert record.salary_range == NOT_SPECIFIED
    assert record.publish_date == NOT_SPECIFIED


def test_labels_beyond_hop_limit_are_ignored():
    # Labels live twelve levels above the link
    inner = '<a href="JobPosting.aspx?JobControlId=42">TITLE</a>'
    for _ in range(12):
        inner = f"<div>{inner}</div>"
    html = f"<div><p>Department: Far Away</p><p>Location: Nowhere</p>{inner}</div>"

    parsed = extract_job_records(html)

    assert parsed[0].department == NOT_SPECIFIED
    assert parsed[0].location == NOT_SPECIFIED


def test_does_not_borrow_fields_from_neighbouring_listing():
    html = """
    <div id="results">
      <div class="job-card">
        <a href="JobPosting.aspx?JobControlId=1">FIRST</a>
        <p>Department: Caltrans</p><p>Location: Fresno</p>
      </div>
      <div class="job-card"><div><a href="JobPosting.aspx?JobControlId=2">SECOND</a></div></div>
    </div>
    """

    parsed = {r.job_control: r for r in extract_job_records(html)}

    assert parsed["1"].department == "Caltrans"
    assert parsed["2"].department == NOT_SPECIFIED


def test_duplicate_links_on_a_page_yield_one_record():
    html = """
    <div class="job-card">
      <a href="JobPosting.aspx?JobControlId=99">TITLE</a>
      <a href="JobPosting.aspx?JobControlId=99">View</a>
      <p>Department: CDCR</p><p>Location: Kern County</p>
    </div>
    """

    parsed = extract_job_records(html)

    assert len(parsed) == 1
    assert parsed[0].link_title == "TITLE"


def test_links_without_job_control_are_skipped():
    html = '<a href="JobPosting.aspx">Broken</a><a href="/Search/Other.aspx?JobControlId=5">Other</a>'

    assert extract_job_records(html) == []
    assert not has_job_listings(html)


def test_label_and_value_in_separate_elements():
    text = "\n".join([
        "Working Title:", "Research Data Specialist I",
        "Salary Range:", "$6,031.00 - $7,550.00",
        "Department:", "Department of Public Health",
        "Location:",
        "Publish Date:", "8/20/2025",
    ])

    fields = extract_container_fields(text)

    assert fields["working_title"] == "Research Data Specialist I"
    assert fields["salary_range"] == "$6,031.00 - $7,550.00"
    assert fields["department"] == "Department of Public Health"
    assert fields["publish_date"] == "8/20/2025"
    # "Location:" is followed by another label, not a value
    assert "location" not in fields


def test_several_labels_on_one_line_are_split():
    fields = extract_container_fields("Department: CalFire Location: Redding Telework: No")

    assert fields == {"department": "CalFire", "location": "Redding", "telework": "No"}


def test_extract_job_control():
    assert extract_job_control("JobPosting.aspx?JobControlId=483920") == "483920"
    assert extract_job_control("JobPosting.aspx?jobcontrolid=1") is None
    assert extract_job_control(None) is None


def test_parse_total_jobs():
    assert parse_total_jobs("Showing 1 - 100 of results. 237 job(s) found") == 237
    assert parse_total_jobs("4,312 job(s) found") == 4312
    assert parse_total_jobs("No banner here") == 0
    assert parse_total_jobs("") == 0


def test_page_inspector_ancestor_walk_respects_max_hops():
    inspector = PageInspector("<section><div><div><a id='x' href='#'>x</a></div></div></section>")
    anchor = inspector.soup.find("a")

    assert inspector.ancestor_with_text(anchor, lambda t: True, max_hops=1).name == "div"
    assert inspector.ancestor_with_text(anchor, lambda t: False, max_hops=10) is None


def test_values_split_by_inline_tags_are_read_whole():
    html = """
    <div class="job-card">
      <a href="JobPosting.aspx?JobControlId=77">ENGINEER</a>
      <p>Salary Range: $5,000.00 - <b>$6,500.00</b></p>
      <p>Location: <span>Sacramento</span> County</p>
      <p><strong>Department:</strong> Department of <em>Transportation</em></p>
    </div>
    """

    parsed = extract_job_records(html)

    assert parsed[0].salary_range == "$5,000.00 - $6,500.00"
    assert parsed[0].location == "Sacramento County"
    assert parsed[0].department == "Department of Transportation"


def test_table_cells_split_label_from_value():
    html = """
    <table><tr>
      <td><a href="JobPosting.aspx?JobControlId=78">ANALYST</a></td>
      <td>Salary Range:</td><td>$4,000.00 - <b>$5,000.00</b></td>
      <td>Telework:</td><td><span>Hybrid</span></td>
    </tr></table>
    """

    parsed = extract_job_records(html)

    assert parsed[0].salary_range == "$4,000.00 - $5,000.00"
    assert parsed[0].telework == "Hybrid"


def test_block_text_keeps_inline_runs_on_one_line():
    inspector = PageInspector("<div><p>A: <b>x</b> y</p><!-- note --><p>B:<br>z</p></div>")

    lines = [line.strip() for line in block_text(inspector.soup.div).splitlines() if line.strip()]

    assert lines == ["A: x y", "B:", "z"]
