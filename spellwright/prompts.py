"""Clue prompt assembly.

build_clue_prompt() turns a PromptContext into the (system, user) message
pair sent to the inference backend. Section order of the system prompt:

  1. NPC identity line
  2. personality template (placeholders substituted), if any
  3. RULES block
  4. BOSS CONSTRAINT line (boss NPCs with a constraint only)
  5. ACTIVE MODIFIERS block (only when modifiers are active)
  6. JSON response format with a literal example

Pure string work: no I/O, never raises on odd input.
"""

from __future__ import annotations

from spellwright.models import MOODS, AssembledPrompt, NPCIdentity, PromptContext, archetype_label

RESPONSE_FORMAT_EXAMPLE = '{"clue": "your clue text", "mood": "' + "|".join(MOODS) + '"}'


def build_clue_prompt(ctx: PromptContext) -> AssembledPrompt:
    """Build the system prompt and user message for one clue request."""
    return AssembledPrompt(
        system_prompt=build_system_prompt(
            ctx.npc, ctx.category, ctx.clue_index, ctx.active_modifiers,
        ),
        user_message=build_user_message(
            ctx.target_word, ctx.category, ctx.clue_index, ctx.previous_guesses,
        ),
    )


def personalize(template: str, npc: NPCIdentity, category: str, clue_number: int) -> str:
    """Substitute the known placeholders by plain replacement.

    Unknown placeholders such as {mood} stay in the text untouched.
    """
    return (
        template
        .replace("{displayName}", npc.display_name)
        .replace("{archetype}", archetype_label(npc.archetype))
        .replace("{category}", category)
        .replace("{clueNumber}", str(clue_number))
    )


def build_system_prompt(
    npc: NPCIdentity,
    category: str,
    clue_number: int,
    active_modifiers: tuple[str, ...] | list[str] = (),
) -> str:
    lines: list[str] = [
        f"You are {npc.display_name}, a {archetype_label(npc.archetype)} "
        "in a magical word-guessing game.",
        "",
    ]

    if npc.personality_template.strip():
        lines.append(personalize(npc.personality_template, npc, category, clue_number))
        lines.append("")

    specificity = f"- This is clue #{clue_number}. Each clue should be MORE specific than the last."
    if clue_number > 1:
        specificity += f" It must be more specific than clue #{clue_number - 1}."

    lines.extend([
        "RULES:",
        "- The player is trying to guess a secret word. You give clues.",
        "- NEVER say the word directly. NEVER use the word in your clue.",
        "- NEVER use a word that contains the secret word as a substring.",
        "- Your clue should be 1-2 sentences maximum.",
        f'- The word category is "{category}".',
        specificity,
    ])

    if npc.is_boss and npc.boss_constraint.strip():
        lines.append(f"- BOSS CONSTRAINT: {npc.boss_constraint}")

    if active_modifiers:
        lines.append("")
        lines.append("ACTIVE MODIFIERS:")
        lines.extend(f"- {name}" for name in active_modifiers)

    lines.extend([
        "",
        "Respond in JSON format:",
        RESPONSE_FORMAT_EXAMPLE,
    ])
    return "\n".join(lines) + "\n"


def build_user_message(
    target_word: str,
    category: str,
    clue_number: int,
    previous_guesses: tuple[str, ...] | list[str] = (),
) -> str:
    lines = [
        f'The secret word is "{target_word}" (category: {category}, '
        f"{len(target_word)} letters).",
    ]
    if previous_guesses:
        wrong = ", ".join(f'"{g}" (wrong)' for g in previous_guesses)
        lines.append(f"The player has guessed: {wrong}")
    lines.append(f"Give clue #{clue_number}. Remember: more specific than previous clues.")
    return "\n".join(lines) + "\n"
