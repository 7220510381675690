"""
Serverless entry point for the Knowledge Pipeline API
"""
import os

# Serverless defaults: no background scheduler
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("FOLLOWUP_DISPATCH_INTERVAL", "0")

from mangum import Mangum

from knowledge_pipeline.main import app

# ASGI handler; lifespan off, each invocation opens what it needs lazily
handler = Mangum(app, lifespan="off")
