"""Templates for in-app notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class InAppTemplate:
  """Define an in-app notification template."""

  template_id: str
  title_template: str
  body_template: str
  required_keys: set[str]


TEMPLATES: dict[str, InAppTemplate] = {
  "job_completed": InAppTemplate(template_id="job_completed", title_template="Your document is ready", body_template="All artifacts for {{title}} have been generated.", required_keys={"title"}),
  "job_failed": InAppTemplate(template_id="job_failed", title_template="Processing failed", body_template="We could not finish processing {{title}}. {{error}} Retry is available for job {{job_id}}.", required_keys={"title", "error", "job_id"}),
  "images_incomplete": InAppTemplate(template_id="images_incomplete", title_template="Some images are missing", body_template="{{failed}} of {{total}} images for {{title}} could not be generated.", required_keys={"title", "failed", "total"}),
  "low_credits": InAppTemplate(template_id="low_credits", title_template="Credits running low", body_template="You have {{balance}} credits left.", required_keys={"balance"}),
}


def render_in_app_template(*, template_id: str, data: dict[str, Any]) -> tuple[str, str]:
  """Render a template into a title and body string."""
  template = TEMPLATES.get(template_id)
  if template is None:
    raise ValueError(f"Unknown in-app template: {template_id}")
  missing = sorted(template.required_keys - set(data.keys()))
  if missing:
    raise ValueError(f"Missing placeholders for template '{template_id}': {', '.join(missing)}")
  title = template.title_template
  body = template.body_template
  for key, value in data.items():
    title = title.replace(f"{{{{{key}}}}}", str(value))
    body = body.replace(f"{{{{{key}}}}}", str(value))
  return title, body
