from pydantic import BaseModel

# Health check schema
class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    store: str
