"""
Prompt templates for company research.
"""

COMPANY_FACTS_PROMPT = """You are building a factual profile of the company "{company}" from one web page.

Extract ONLY facts about {company} that are stated on the page. For each field
return an object {{"value": ..., "confidence": 0.0-1.0}} or null when the page
does not say.

Fields:
- description_text: 1-3 sentence description of what the company does (string)
- industries: industries or sectors (array of strings)
- hq_location: headquarters city and country (string)
- size_range: employee count or range, e.g. "51-200" (string)
- founded_year: year founded (integer)
- funding_stage: e.g. Seed, Series B, Public, Bootstrapped (string)
- public_company: whether it is publicly traded (boolean)
- ticker: stock ticker if public (string)
- remote_policy: Remote, Hybrid, Onsite or a short description (string)
- sponsorship_signals: statements about visa / H1B sponsorship (array of strings)
- hiring_locations: locations they hire in (array of strings)
- tech_stack_hints: technologies they use (array of strings)
- job_count_open: number of open positions (integer)

Use lower confidence for indirect or ambiguous statements. Do not guess.

Return ONLY a JSON object with exactly these 13 keys.

Page URL: {url}

PAGE TEXT:
{text}"""
