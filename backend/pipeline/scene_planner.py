"""
Scene Planner

Turns a project's story into an ordered list of scenes using the configured
text provider, then replaces the project's scenes with the result.

Prompts live in pipeline/prompts/scene_planning.yaml.
"""

import json
import re
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from sqlalchemy.orm import Session

from models import Scene
from pipeline.error_handler import AIGenerationError, ValidationError
from pipeline.media import MediaPersister
from pipeline.projects import ProjectRepository
from services.providers import PlannedScene, ScenePlan, TextProvider, get_text_provider

logger = structlog.get_logger()

PROMPTS_PATH = Path(__file__).parent / "prompts" / "scene_planning.yaml"

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

_prompts: Optional[dict] = None


def load_prompts() -> dict:
    """Load and cache the scene planning prompt config."""
    global _prompts
    if _prompts is None:
        with open(PROMPTS_PATH, "r") as f:
            _prompts = yaml.safe_load(f) or {}
        logger.debug("scene_prompts_loaded", path=str(PROMPTS_PATH))
    return _prompts


def parse_scene_plan(content: str, provider: str = "text") -> ScenePlan:
    """
    Parse a model reply into a ScenePlan.

    Accepts bare JSON or JSON inside a ``` / ```json fence. A missing
    order_index defaults to the scene's position (1-based) and a missing
    visual_prompt to the description.

    Raises:
        AIGenerationError: If the reply is not usable JSON or has no scenes
    """
    text = content.strip()
    match = _FENCED_JSON.search(text)
    if match:
        text = match.group(1).strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise AIGenerationError(
            provider,
            f"Failed to parse scene JSON: {e}",
            cause=e,
            details={"raw_content": content[:500]},
        )

    raw_scenes = parsed.get("scenes") if isinstance(parsed, dict) else None
    if not isinstance(raw_scenes, list) or not raw_scenes:
        raise AIGenerationError(provider, "Scene plan contains no scenes", details={"raw_content": content[:500]})

    scenes = []
    for index, item in enumerate(raw_scenes):
        if not isinstance(item, dict) or not str(item.get("description") or "").strip():
            raise AIGenerationError(provider, f"Scene {index + 1} has no description")
        description = str(item["description"]).strip()
        order_index = item.get("order_index")
        scenes.append(PlannedScene(
            order_index=int(order_index) if order_index is not None else index + 1,
            description=description,
            visual_prompt=str(item.get("visual_prompt") or "").strip() or description,
        ))

    if len({s.order_index for s in scenes}) != len(scenes):
        # Duplicate indices would break the (project, order_index) uniqueness
        scenes = [s.model_copy(update={"order_index": i + 1}) for i, s in enumerate(scenes)]

    return ScenePlan(title=parsed.get("title"), scenes=scenes)


class ScenePlanner:
    """
    Usage:
        planner = ScenePlanner(db)
        scenes = await planner.generate_scenes("user-1", project_id)
    """

    def __init__(
        self,
        db: Session,
        provider: Optional[TextProvider] = None,
        media: Optional[MediaPersister] = None,
    ):
        self.db = db
        self.projects = ProjectRepository(db)
        self._provider = provider
        self.media = media or MediaPersister()

    @property
    def provider(self) -> TextProvider:
        if self._provider is None:
            self._provider = get_text_provider()
        return self._provider

    async def plan(self, story: str, style: str, different_take: bool = False) -> ScenePlan:
        prompts = load_prompts()
        if different_take:
            story = story + prompts.get("regenerate_suffix", "")
        user_prompt = prompts["user_prompt"].replace("{story}", story).replace("{style}", style)

        content = await self.provider.complete(
            prompts["system_prompt"],
            user_prompt,
            temperature=prompts.get("temperature", 0.8),
        )
        return parse_scene_plan(content, self.provider.name)

    async def generate_scenes(self, principal: str, project_id: str, different_take: bool = False) -> List[Scene]:
        """
        Plan scenes for a project and replace its existing ones.

        Nothing is deleted until the provider has returned a valid plan.

        Raises:
            OwnershipError: Project missing or not owned by principal
            ValidationError: Project has no story or style
            AIGenerationError: Provider failed or returned unusable output
        """
        project = self.projects.get_owned_project(principal, project_id)
        if not project.story or not project.style:
            raise ValidationError("Project must have story and style defined", field="story")

        log = logger.bind(project_id=project_id, provider=self.provider.name)
        log.info("scene_planning_started", different_take=different_take)

        plan = await self.plan(project.story, project.style, different_take)

        old_scene_ids = [s.id for s in self.projects.list_scenes(principal, project_id)]
        scenes = self.projects.replace_scenes(
            principal, project_id, [s.model_dump() for s in plan.scenes]
        )

        for scene_id in old_scene_ids:
            try:
                await self.media.remove_scene_media(project_id, scene_id)
            except Exception as e:
                # Rows are already gone; orphaned files are only wasted space
                log.warning("scene_media_cleanup_failed", scene_id=scene_id, error=str(e))

        log.info("scene_planning_completed", scene_count=len(scenes), title=plan.title)
        return scenes

    async def regenerate_scenes(self, principal: str, project_id: str) -> List[Scene]:
        """Same as generate_scenes, asking the model for a different take."""
        return await self.generate_scenes(principal, project_id, different_take=True)
