# policy_qa/prompts/prompt_builder.py


def build_answer_prompt(question: str, context_text: str) -> str:
    """
    User-turn prompt for a grounded answer.

    ``context_text`` is the assembled block of labelled policy sections; the
    persona and refusal rules live in the system prompt.
    """

    prompt = f"""
POLICY CONTENT:
----------------
{context_text}
----------------

POLICYHOLDER QUESTION:
{question}

INSTRUCTIONS:

Answer using ONLY the POLICY CONTENT above.

Cite the section labels you rely on.

If the policy content does not contain the answer, say:
"I couldn't find this in the provided policy documents."

ANSWER:
"""

    return prompt.strip()
