"""Server-wide constants."""

PROJECT_NAME = "QuestForge-AI"
API_V1_STR = "/api/v1"
