"""Shared pytest fixtures."""

import pytest

from mediaflow.engine.session import WorkflowSession
from mediaflow.utils import config as config_module
from mediaflow.utils import service_client as service_client_module
from mediaflow.utils.config import CREDENTIAL_ENV_VARS, ConfigManager

IMAGE = "data:image/png;base64,AAA"


@pytest.fixture(autouse=True)
def config_manager(tmp_path, monkeypatch):
    """Point the global config at a temporary file and drop env credentials."""
    for env_var in CREDENTIAL_ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)
    manager = ConfigManager(tmp_path / "mediaflow" / "config.json")
    monkeypatch.setattr(config_module, "_config_manager", manager)
    monkeypatch.setattr(service_client_module, "_service_client", None)
    return manager


class CallRecorder:
    """Fake operations that record which nodes ran, in start order."""

    def __init__(self):
        self.calls = []

    def llm(self, inputs, config):
        self.calls.append("llmGenerate")
        return {"text": f"described {len(inputs['image'])} image(s)", "image": inputs["image"]}

    def output(self, inputs, config):
        self.calls.append("output")
        return {"image": inputs.get("image"), "video": inputs.get("video"), "audio": inputs.get("audio")}

    def operations(self):
        return {"llmGenerate": self.llm, "output": self.output}


@pytest.fixture
def recorder():
    return CallRecorder()


@pytest.fixture
def session(recorder):
    """Session whose service-backed operations are replaced by fakes."""
    return WorkflowSession(operations=recorder.operations())


@pytest.fixture
def describe_chain(session):
    """ImageInput and Prompt feeding an LLM whose image passthrough feeds Output."""
    image = session.add_node("imageInput", data={"image": IMAGE})
    prompt = session.add_node("prompt", data={"prompt": "Describe the image"})
    llm = session.add_node("llmGenerate")
    out = session.add_node("output")
    session.connect(image, "image", llm, "image")
    session.connect(prompt, "text", llm, "text")
    session.connect(llm, "image", out, "image")
    return {"image": image, "prompt": prompt, "llm": llm, "output": out}
