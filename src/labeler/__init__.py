"""GitHub ML Labeler.

Downloads labeled issues and pull requests as training data, predicts area
labels with a classifier, and applies them back to GitHub.

Subpackages:
- github: GraphQL/REST client and record models
- paging: paged downloads with retries and eligibility filtering
- decision: label decisions from classifier scores
- classifier: classifier contract and the LLM-backed classifier
- events: event emission and Prometheus metrics
"""

__version__ = "0.1.0"
