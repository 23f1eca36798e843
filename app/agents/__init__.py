# =============================================================================
# Agents Package — LangGraph Query Pipeline
# =============================================================================
#   - intent.py:       general vs specific classification, k widening
#   - search.py:       embed → similarity search → document hydration
#   - context.py:      token-budgeted context assembly
#   - analyst.py:      grounded generation, hedge detection, fallback answer
#   - citations.py:    per-document dedupe and signed links
#   - orchestrator.py: the StateGraph wiring the steps together
# =============================================================================
