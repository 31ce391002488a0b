# =============================================================================
# Services Package: Oracle and Tool Adapters
# =============================================================================
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - oracle.py: text / structured / tool-augmented oracle calls
#   - datagov.py: data.gov CKAN client (search, show, autocomplete)
#   - fetcher.py: CSV download/preview and page text extraction
#   - analytics.py: in-memory DuckDB table store
#   - progress.py: advisory progress events per connection id
# =============================================================================
