"""
expansion_engine.engine — the scoring pipeline.

Modules:
  grid         — adaptive grid + settlement candidate generation
  features     — per-candidate signals, constraint checks, completeness
  scorer       — normalized factors, weighted score, confidence band
  suppression  — greedy spatial non-maximum suppression
  reranker     — LLM strategy reranker with retry, fallback and guardrails
  orchestrator — iterative expansion loop and result assembly
"""
