"""
Prompt templates for every analysis stage.
Templates use str.format(); literal JSON braces are doubled.
"""

# Limits on how much text goes into the cheaper, summary-style prompts
CONTEXT_EXCERPT_CHARS = 3000
ORIGIN_EXCERPT_CHARS = 2000
CONFIDENCE_EXCERPT_CHARS = 2000

JSON_ONLY = "Respond with a single valid JSON object and nothing else. No markdown, no commentary."

REASK_SUFFIX = """

IMPORTANT: Your previous answer could not be parsed as JSON.
Return ONLY the JSON object described above, with every string value properly escaped."""

VIDEO_CONTEXT_BLOCK = """

VIDEO CONTEXT (from visual analysis):
{video_context}

Use the video context above together with the text to provide an accurate analysis."""


CONTEXT_PROMPT = """You are a content policy analyst. Classify the following content.

Content:
---
{text}
---

Return JSON with exactly these fields:
{{
  "content_type": "Gaming | Educational | Entertainment | News | Tutorial | Review | Vlog | Music | Sports | General",
  "target_audience": "General Audience | Family | Teen | Adult | Professional | Educational",
  "monetization_impact": <0-100, how strongly the content's nature affects ad suitability>,
  "content_length": <number of characters>,
  "language_detected": "<ISO language code>"
}}

""" + JSON_ONLY


CONTENT_ORIGIN_PROMPT = """Analyze this video transcript for AI generation patterns, considering the channel context and content type.

Channel Context:
- Channel Age: {channel_age:.1f} years
- Established Channel: {established}
- Subscriber Count: {subscriber_count}
- Video Count: {video_count}
- AI Probability (Channel Level): {channel_ai_probability}%

Content Type: {content_type}
Content Length: {content_length} characters

Content to Analyze:
"{excerpt}"

Be VERY conservative. Only flag content with CLEAR, OBVIOUS AI generation patterns.
Keep the probability and the explanation consistent with each other.

Return JSON:
{{
  "ai_probability": <0-100>,
  "confidence": <0-100>,
  "patterns": ["<pattern>", ...],
  "indicators": {{
    "repetitive_language": <0-100>,
    "structured_content": <0-100>,
    "personal_voice": <0-100>,
    "grammar_consistency": <0-100>,
    "natural_flow": <0-100>
  }},
  "explanation": "<at least four sentences>"
}}

""" + JSON_ONLY


CATEGORY_PROMPT = """You are an expert content policy analyst. Score the content below against each policy category.

Content type: {content_type}
Target audience: {target_audience}

Policy categories (key: name):
{category_list}

Content:
---
{text}
---

For EVERY category key above return an entry. Scores are 0-100 (0 = no risk).
Severity is LOW, MEDIUM or HIGH. Quote the exact violating words in "violations".

{{
  "categories": {{
    "<CATEGORY_KEY>": {{
      "risk_score": <0-100>,
      "confidence": <0-100>,
      "violations": ["<exact phrase>", ...],
      "severity": "LOW | MEDIUM | HIGH",
      "explanation": "<one or two sentences>"
    }}
  }}
}}

""" + JSON_ONLY


RISK_ASSESSMENT_PROMPT = """You are assessing policy risk in a section of content.

Content type: {content_type}
Target audience: {target_audience}

Category analysis so far (use as guidance):
{category_summary}

Section to assess:
---
{text}
---

Identify the risky spans in THIS section. start_index and end_index are
character offsets into the section text above (end exclusive). Quote the span
text exactly as it appears.

{{
  "overall_risk_score": <0-100>,
  "flagged_section": "<one sentence naming the most significant risk>",
  "risk_factors": ["<factor>", ...],
  "severity_level": "LOW | MEDIUM | HIGH",
  "risky_spans": [
    {{
      "text": "<exact text>",
      "start_index": <int>,
      "end_index": <int>,
      "risk_level": "LOW | MEDIUM | HIGH",
      "policy_category": "<CATEGORY_KEY>",
      "explanation": "<why>"
    }}
  ],
  "risky_phrases": ["<phrase>", ...],
  "risky_phrases_by_category": {{"<CATEGORY_KEY>": ["<phrase>", ...]}}
}}

""" + JSON_ONLY


CONFIDENCE_PROMPT = """Rate how confident the following policy analysis can be.

Content excerpt:
---
{excerpt}
---

Category results:
{category_summary}

Risk assessment: score {risk_score}, severity {severity}, flagged: "{flagged_section}"

{{
  "overall_confidence": <0-100>,
  "text_clarity": <0-100>,
  "policy_specificity": <0-100>,
  "context_availability": <0-100>,
  "confidence_factors": ["<factor>", ...]
}}

""" + JSON_ONLY


SUGGESTIONS_PROMPT = """Generate specific, actionable suggestions to improve the following content based on the analysis.

Content type: {content_type}
Target audience: {target_audience}
Overall risk: {risk_score} ({severity})
Main concern: {flagged_section}

Highest-risk categories:
{category_summary}

Phrase every suggestion as advice ("Consider...", "It is advised to..."), not a command.
Provide between {min_suggestions} and {max_suggestions} suggestions. If the content is very safe,
include tips for growth, engagement, monetization, or best practices.

{{
  "suggestions": [
    {{
      "title": "<short title>",
      "text": "<the suggestion>",
      "priority": "HIGH | MEDIUM | LOW",
      "impact_score": <0-100>
    }}
  ]
}}

""" + JSON_ONLY


BASIC_ANALYSIS_PROMPT = """Act as an expert policy analyst. Analyze the following content and provide a risk assessment based on community guidelines and advertiser-friendly policies.

The content to analyze is:
---
"{text}"
---

1. Overall risk score from 0 (no risk) to 100 (high risk). 0-34 is LOW, 35-69 is MEDIUM, 70-100 is HIGH.
2. Risk level: "LOW", "MEDIUM" or "HIGH".
3. Flagged section: one sentence summarizing the single most significant risk.
4. Up to 4 highlights, each with a policy area, a risk level ("high", "medium", "low") and a score (0-100).
5. 5-8 actionable suggestions, each with a title and text.

{{
  "risk_score": <number>,
  "risk_level": "<string>",
  "flagged_section": "<string>",
  "highlights": [{{"category": "<string>", "risk": "<string>", "score": <number>}}],
  "suggestions": [{{"title": "<string>", "text": "<string>"}}]
}}

""" + JSON_ONLY


VIDEO_CONTEXT_PROMPT = """Analyze this video content and provide a comprehensive context summary including:
- Visual content description
- Content type and style
- Key visual elements
- Overall tone and presentation
- Any notable visual features or concerns

Provide this as a detailed text summary that can be used for further analysis."""


def with_video_context(prompt: str, video_context: str = None) -> str:
    if not video_context:
        return prompt
    return prompt + VIDEO_CONTEXT_BLOCK.format(video_context=video_context)
