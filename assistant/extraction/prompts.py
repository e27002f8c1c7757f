"""
Prompt templates for the extraction stage.

Templates use ``str.format`` placeholders; literal braces in the JSON shapes
are doubled.
"""

# ===== CHUNK RANKING (RAG focus) =====

CHUNK_LABELS = [
    "TITLE",
    "COMPANY",
    "LOCATION",
    "ABOUT",
    "RESPONSIBILITIES",
    "REQUIREMENTS",
    "BENEFITS",
    "APPLY_INSTRUCTIONS",
    "GENERAL_JOB_TEXT",
    "NAV_OR_FOOTER",
    "UNRELATED",
]

RANK_CHUNK_PROMPT = """You are ranking text chunks from ONE job posting page.

Chunks arrive one at a time in document order. With each chunk you get:
- MEMORY: which core pieces have ALREADY been seen
- PREVIOUS: the previous chunk (to detect continuations)

For the CURRENT chunk:
1. Rate its importance for understanding the job posting (0 to 1).
2. Pick the closest label:
   TITLE, COMPANY, LOCATION, ABOUT, RESPONSIBILITIES, REQUIREMENTS,
   BENEFITS, APPLY_INSTRUCTIONS, GENERAL_JOB_TEXT, NAV_OR_FOOTER, UNRELATED
3. Say whether it continues an important previous chunk.
4. Set memory flags for core pieces this chunk clearly contains.

Rules:
- Site menus, global footers, cookie banners and legal boilerplate are NAV_OR_FOOTER or UNRELATED.
- The main job title line is TITLE and very important.
- "About the role / team / job" paragraphs are ABOUT.
- Responsibilities and requirements are important even as bullet lists.

Return ONLY one JSON object:
{{
  "importance": 0.0,
  "label": "GENERAL_JOB_TEXT",
  "continuation": false,
  "memory": {{
    "has_title": false,
    "has_company": false,
    "has_location": false,
    "has_about_team": false,
    "has_responsibilities": false,
    "has_requirements": false
  }}
}}

MEMORY:
{memory}

PREVIOUS:
{previous}

CURRENT:
{current}"""

# ===== JOB DETAIL =====

JOB_DETAIL_PROMPT = """Extract the single job posting from this page HTML.

Return a JSON object with exactly these fields:
- title: job title (string)
- company: hiring company name (string)
- company_one_liner: one-sentence company description (string or null)
- location: job location (string or null)
- salary: salary or compensation text (string or null)
- description: full job description as plain text (string)
- requirements: requirements and qualifications (array of strings)
- posted_date: when posted (string or null)
- deadline: application deadline (string or null)
- employment_type: e.g. Full-time, Part-time, Contract (string or null)
- remote_type: Remote, Hybrid or Onsite (string or null)
- seniority: e.g. Entry, Mid, Senior, Staff (string or null)
- apply_url: direct apply URL if different from the page URL (string or null)
- department: department or team (string or null)

Use null when a field is not on the page. Do not invent values.

Page URL: {url}

HTML:
{html}"""

# ===== LISTINGS =====

LISTING_PROMPT = """Extract every job listing from this HTML.

For each job return:
- title
- company
- location
- url (resolve relative URLs against {url})
- posted_at
- salary

Return a JSON array: [{{"title": "...", "company": "...", "location": "...", "url": "...", "posted_at": "...", "salary": "..."}}]
Return [] if the page has no job listings.

HTML:
{html}"""
