"""Pipeline execution controller for the AI agent organization dashboard.

This package drives projects through the fixed ten-stage pipeline
(Intake → Research → Spec → ... → Launched), providing:
- A read-only stage catalog and agent mapping
- A server-sent event stream reader with a reconnecting subscription
- Task generation for each stage attempt
- An execution store with atomic pipeline transitions
- A controller that streams remote stage execution and gates advancement
  on stage deliverables
- Observability events, Prometheus metrics and a FastAPI surface
"""
