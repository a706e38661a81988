"""Auto PR Bot: turns a natural-language change request into a pull request.

This package implements the request-to-PR workflow, providing:
- Request intake with rate limiting and asynchronous task dispatch
- A per-request progress tracker backed by DynamoDB
- A forward-only stage machine for each pipeline run
- LLM-driven repository analysis and file generation
- Git workspace provisioning for the bot's fork
- Pull request reconciliation and creation on GitHub
"""
