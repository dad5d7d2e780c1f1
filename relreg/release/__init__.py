"""Release bounded context.

Split into layers with one-way dependencies:
- domain: versions, manifest and candidate values plus their pure rules
- infra: stores, persistence and external collaborators
- flow: state machine driver, promotion coordinator and resolver
- view: console rendering
"""
