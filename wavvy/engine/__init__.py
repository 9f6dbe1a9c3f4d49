# Chat generation engine
#
# This package turns a role-tagged conversation into a token stream and
# back into text, one sampled token at a time.
#
# Key components:
#   - adapters/         Model backends exposing forward(input_ids, position)
#   - registry.py       Maps model family names to prompt/EOS variants
#   - chat_template.py  Conversation -> prompt text per variant
#   - sampling.py       Sampling config + seeded sampler
#   - repetition.py     Repeat-penalty logit filter
#   - token_output.py   Incremental, UTF-8 safe detokenizer
#   - chat_engine.py    Generation state machine, blocking + streaming
