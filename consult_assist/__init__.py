"""
Consult Assist - Clinical Consultation Transcription and Record Assistance

FastAPI service that transcribes recorded consultations, drafts structured
medical records, resolves them against a reference catalog and runs advisory
LLM fact checks.
"""

__version__ = "1.0.0"
