"""
Step 2: Prompt assembly.

The prompt is a pure function of the collected context: fixed instruction
blocks and few-shot examples, then the patient's own chief complaint with
priority language, the structured history and symptom fields, optional voice
data, the extracted document text and finally the output schema.
"""
from __future__ import annotations

import json
from typing import Any

from packages.shared.models import ClinicalContext, PatientProfile

NOT_SPECIFIED = "Not specified"
NO_TEXT_PLACEHOLDER = "[No text could be extracted from this file]"

SYSTEM_PROMPT = (
    "You are a clinical-grade medical summarizer with expertise in analyzing patient data and creating "
    "comprehensive clinical summaries. You must provide accurate, structured medical assessments based on the "
    "provided patient information, symptoms, and uploaded documents. Always maintain medical confidentiality "
    "and provide evidence-based recommendations."
)

DEVELOPER_PROMPT = (
    "Analyze the provided patient data including medical history, current symptoms, and uploaded documents to "
    "create a structured clinical summary. Focus on identifying key clinical findings, potential differential "
    "diagnoses, and appropriate diagnostic recommendations."
)

FEW_SHOT_PROMPT = """Here are examples of high-quality clinical summaries:

Example 1:
Patient presents with chest pain radiating to left arm, history of hypertension and smoking.
Differential diagnoses: Acute coronary syndrome, stable angina, musculoskeletal pain.
Recommended tests: ECG, cardiac enzymes, chest X-ray, stress test if indicated.

Example 2:
Patient with diabetes reports foot numbness and tingling, poor glycemic control.
Differential diagnoses: Diabetic neuropathy, peripheral vascular disease, vitamin B12 deficiency.
Recommended tests: Diabetic foot exam, A1C, nerve conduction studies, vascular assessment.

Example 3:
Patient reports persistent cough for 3 weeks, no fever, history of asthma.
Differential diagnoses: Post-viral cough, asthma exacerbation, GERD, post-nasal drip.
Recommended tests: Spirometry, chest X-ray, allergy testing if indicated."""

JSON_REPAIR_PROMPT = (
    "IMPORTANT: You must return ONLY valid JSON matching the exact schema provided. If your response is not in "
    "the correct JSON format, fix it immediately. The response must be parseable JSON with the exact field "
    "names specified."
)


def _first(data: dict[str, Any], *keys: str) -> Any:
    """Intake forms have used both camelCase and snake_case keys."""
    for key in keys:
        value = data.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any, default: str = NOT_SPECIFIED) -> str:
    if value in (None, "", [], {}):
        return default
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def chief_complaint_of(form_data: dict[str, Any]) -> str:
    return _text(_first(form_data, "chiefComplaint", "chief_complaint"))


def _patient_block(profile: PatientProfile) -> str:
    age = f"{profile.age} years" if profile.age is not None else NOT_SPECIFIED
    return "\n".join([
        "PATIENT INFORMATION:",
        f"Age: {age}",
        f"Gender: {_text(profile.gender)}",
        f"Family History: {_text(profile.family_history)}",
        f"Smoking Status: {_text(profile.smoking_status)}",
        f"Tobacco Use: {_text(profile.tobacco_use)}",
        f"Allergies: {_text(profile.allergies)}",
        f"Alcohol Consumption: {_text(profile.alcohol_consumption)}",
        f"Exercise Frequency: {_text(profile.exercise_frequency)}",
        f"BMI: {_text(profile.bmi)}",
    ])


def _symptom_block(form: dict[str, Any], chief_complaint: str) -> str:
    return "\n".join([
        "CURRENT SYMPTOMS AND PATIENT INPUT:",
        f"Chief Complaint (PATIENT'S PRIMARY CONCERN): {chief_complaint}",
        f"Symptom Duration: {_text(_first(form, 'symptomDuration', 'symptom_duration'))}",
        f"Severity Level: {_text(_first(form, 'severityLevel', 'severity_level'))}",
        f"Detailed Symptoms: {_text(_first(form, 'symptoms'))}",
        f"Additional Symptoms: {_text(_first(form, 'additionalSymptoms', 'additional_symptoms'), 'None')}",
        f"Current Allergies: {_text(_first(form, 'allergies'), 'None')}",
        f"Current Medications: {_text(_first(form, 'medications'), 'None')}",
        f"Chronic Conditions: {_text(_first(form, 'chronicConditions', 'chronic_conditions'), 'None')}",
    ])


def _document_block(context: ClinicalContext) -> str:
    if not context.files:
        return "UPLOADED MEDICAL DOCUMENTS:\nNo documents uploaded or processed for this consultation."
    lines = ["UPLOADED MEDICAL DOCUMENTS:"]
    for index, f in enumerate(context.files, start=1):
        lines.append(f"\n--- Document {index}: {f.file_name} ({f.file_type}) ---")
        if f.text:
            lines.append(f"EXTRACTED CONTENT:\n{f.text}")
        else:
            lines.append(NO_TEXT_PLACEHOLDER)
    lines.append(f"\nTotal Processed Documents: {len(context.files)}")
    return "\n".join(lines)


def build_clinical_prompt(context: ClinicalContext) -> str:
    form = context.form_data or {}
    chief_complaint = chief_complaint_of(form)

    priority = (
        "CRITICAL: CHIEF COMPLAINT PRIORITY\n"
        f'The patient has explicitly stated their PRIMARY CHIEF COMPLAINT as: "{chief_complaint}"\n\n'
        "This is the MAIN REASON for their visit. You MUST use this exact chief complaint as provided by the "
        "patient.\nDO NOT modify, rephrase, or derive a different chief complaint from other symptoms or "
        "documents.\nThis chief complaint takes ABSOLUTE PRIORITY over any other information."
    )

    sections = [
        SYSTEM_PROMPT,
        DEVELOPER_PROMPT,
        FEW_SHOT_PROMPT,
        priority,
        _patient_block(context.profile),
        _symptom_block(form, chief_complaint),
    ]
    if context.voice_data:
        sections.append("VOICE CONSULTATION DATA:\n" + json.dumps(context.voice_data, indent=2, sort_keys=True, default=str))
    sections.append(_document_block(context))
    sections.append(JSON_REPAIR_PROMPT)
    sections.append(
        "IMPORTANT INSTRUCTIONS:\n"
        f'1. Use the EXACT chief complaint as stated by the patient: "{chief_complaint}"\n'
        "2. Build your analysis around this chief complaint as the primary focus\n"
        "3. Use uploaded document information to SUPPORT and ENHANCE the analysis, not to override the "
        "patient's stated concern\n"
        "4. If documents suggest different issues, mention them as additional findings while keeping the "
        "patient's chief complaint as primary\n"
        "5. If voice consultation data is provided, integrate it with the form data for a complete picture"
    )
    sections.append(
        "Return ONLY valid JSON matching this exact schema:\n"
        "{\n"
        f"  \"chief_complaint\": {json.dumps(chief_complaint)},\n"
        '  "history_of_present_illness": "string",\n'
        '  "differential_diagnoses": ["string"],\n'
        '  "recommended_tests": ["string"],\n'
        '  "urgency_level": "routine" | "urgent" | "emergency"\n'
        "}"
    )
    return "\n\n".join(sections) + "\n"
