##########################################################################
#                                                                        #
#  This file (cli_ui.py) contains the command line interface for         #
#  trying personas against the personalization pipeline                  #
#                                                                        #
##########################################################################


###########
# IMPORTS #
###########

import asyncio
import json
import logging
from pathlib import Path
from personacraft.content_safety import PolicyViolation, SafetyCheckError
from personacraft.pipeline import PipelineOrchestrator
from personacraft.runtime_settings import build_runtime_settings, load_dotenv_file



###########
# LOGGING #
###########

# Enable logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)



###########
# GLOBALS #
###########

ConsoleColors = {
    "default": "\x1b[0m",
    "green": "\x1b[38;5;46m",
    "dark_green": "\x1b[38;5;34m",
    "red": "\x1b[38;5;196m",
    "yellow": "\x1b[38;5;226m",
    "purple": "\x1b[38;5;201m",
}

# Think of this as UI or user policy
settings = {
    "persona": None,
    "intensity": None,
}



####################
# HELPER FUNCTIONS #
####################

def loadRuntimeSettings(configPath: str = "config.json") -> dict:
    load_dotenv_file(".env")
    configData = None
    path = Path(configPath)
    if path.exists():
        configData = json.loads(path.read_text(encoding="utf-8"))
    return build_runtime_settings(configData)

def listPersonas(pipeline: PipelineOrchestrator):
    current = settings.get("persona") or pipeline.get_config().get("default_persona_name")
    for name in pipeline.available_personas():
        if name == current:
            print(ConsoleColors["green"] + name + ConsoleColors["default"])
        else:
            print(name)

def printStats(pipeline: PipelineOrchestrator):
    print("Persona cache:  " + json.dumps(pipeline.get_persona_cache_stats()))
    print("Safety cache:   " + json.dumps(pipeline.get_safety_cache_stats()))
    print("Store:          " + json.dumps(pipeline.store.stats()))



async def main():
    pipeline = PipelineOrchestrator.from_settings(loadRuntimeSettings())

    while(True):
        userInput = input(f"{ConsoleColors['dark_green']}Text > {ConsoleColors['default']}")
        # Check for and handle commands
        if (userInput[:1] == "/"):
            parts = userInput.split(" ", 1)
            command = parts[0]
            argument = parts[1].strip() if len(parts) > 1 else ""
            match command:
                case "/bye":
                    break
                case "/persona":
                    personaRequested = argument or input("Enter the persona you wish to use:  ")
                    settings["persona"] = personaRequested.strip() or None
                    print("Now using " + (settings["persona"] or "the default persona"))
                    continue
                case "/intensity":
                    try:
                        settings["intensity"] = float(argument or input("Intensity (0-5):  "))
                    except ValueError:
                        print("Intensity must be a number")
                    continue
                case "/list":
                    listPersonas(pipeline)
                    continue
                case "/safety":
                    safetyConfig = pipeline.get_safety_config()
                    safetyConfig = pipeline.update_safety_config({"enabled": not safetyConfig.get("enabled")})
                    print("Content safety enabled:  " + str(safetyConfig.get("enabled")))
                    continue
                case "/stats":
                    printStats(pipeline)
                    continue
                case _:
                    print("unknown command")
                    continue

        try:
            result = await pipeline.personalize_text(
                {
                    "text": userInput,
                    "persona_name": settings.get("persona"),
                    "intensity": settings.get("intensity"),
                }
            )
        except PolicyViolation as error:
            print(f"{ConsoleColors['red']}{error}{ConsoleColors['default']}")
            continue
        except SafetyCheckError as error:
            print(f"{ConsoleColors['yellow']}{error}{ConsoleColors['default']}")
            continue

        print(f"{ConsoleColors['purple']}{result.persona_name} > {ConsoleColors['default']}{result.result_text}")
        logger.debug(f"{result.generation_mode} in {result.elapsed_ms}ms, sentiment {result.sentiment.tag}")


if __name__ == "__main__":
    logger.info("Personacraft - begin cli ui application.")
    # Create an event loop object
    loop = asyncio.new_event_loop()
    loop.run_until_complete(main())
    loop.close()
