"""
Data models for workshop apps and exercises.

``App`` is a tagged union discriminated by ``type``: problem, solution,
example or playground. Every model serializes with camelCase aliases so the
browser client sees the same shape the file-system names suggest.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ============= Dev / Test descriptors =============


class NoTest(_Model):
    type: Literal["none"] = "none"


class ScriptTest(_Model):
    """Tests run by a shell command from ``kcd-workshop.scripts.test``."""
    type: Literal["script"] = "script"
    script: str


class BrowserTest(_Model):
    """Tests run in the in-browser harness."""
    type: Literal["browser"] = "browser"
    base_url: str
    test_files: List[str]


TestInfo = Annotated[Union[NoTest, ScriptTest, BrowserTest], Field(discriminator="type")]


class BrowserDev(_Model):
    """Served statically by the workshop app itself."""
    type: Literal["browser"] = "browser"
    base_url: str


class ScriptDev(_Model):
    """Needs its own dev server bound to ``port_number``."""
    type: Literal["script"] = "script"
    port_number: int
    base_url: str


DevInfo = Annotated[Union[BrowserDev, ScriptDev], Field(discriminator="type")]


# ============= Apps =============


class BaseApp(_Model):
    name: str
    title: str
    dir_name: str
    full_path: str
    relative_path: str
    instructions_code: Optional[str] = None
    epic_video_embeds: Optional[List[str]] = None
    test: TestInfo
    dev: DevInfo


class ProblemApp(BaseApp):
    type: Literal["problem"] = "problem"
    exercise_number: int
    step_number: int
    solution_name: Optional[str] = None


class SolutionApp(BaseApp):
    type: Literal["solution"] = "solution"
    exercise_number: int
    step_number: int
    problem_name: Optional[str] = None


class ExampleApp(BaseApp):
    type: Literal["example"] = "example"


class PlaygroundApp(BaseApp):
    type: Literal["playground"] = "playground"
    app_name: str


App = Annotated[
    Union[ProblemApp, SolutionApp, ExampleApp, PlaygroundApp],
    Field(discriminator="type"),
]

ExerciseStepApp = Union[ProblemApp, SolutionApp]


def is_exercise_step_app(app) -> bool:
    return isinstance(app, (ProblemApp, SolutionApp))


# ============= Exercises =============


class ExerciseStep(_Model):
    """One step of an exercise; at least one side is always present."""
    step_number: int
    problem: Optional[ProblemApp] = None
    solution: Optional[SolutionApp] = None


class Exercise(_Model):
    exercise_number: int
    dir_name: str
    title: str
    instructions_code: Optional[str] = None
    finished_code: Optional[str] = None
    instructions_epic_video_embeds: Optional[List[str]] = None
    finished_epic_video_embeds: Optional[List[str]] = None
    # indexed by step_number - 1; None where a step number has no directory
    steps: List[Optional[ExerciseStep]]
    problems: List[ProblemApp]
    solutions: List[SolutionApp]
