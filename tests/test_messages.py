from __future__ import annotations

from conftest import OPENAI_REPORT, msg

from research_chat.models.messages import format_question, is_question_prompt


def test_question_prompt_format_is_recognized():
    prompt = format_question(1, 3, "Which time horizon?")

    assert prompt == "**Question 2 of 3:**\n\nWhich time horizon?"
    assert is_question_prompt(msg(1, prompt))


def test_user_text_and_reports_are_not_question_prompts():
    assert not is_question_prompt(msg(1, format_question(0, 1, "q"), True))
    assert not is_question_prompt(msg(2, OPENAI_REPORT))
