# Pydantic models for request/response payloads and structured data.
