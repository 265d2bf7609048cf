"""
Setup verification script for Quire backend.
Checks all dependencies and services are properly configured.
"""
import asyncio
import sys
import os
from typing import List, Tuple

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_status(message: str, status: bool):
    """Print colored status message."""
    symbol = f"{GREEN}✓{RESET}" if status else f"{RED}✗{RESET}"
    print(f"{symbol} {message}")


async def check_python_version() -> bool:
    """Check Python version is 3.11+."""
    version = sys.version_info
    if version.major == 3 and version.minor >= 11:
        print_status(f"Python version: {version.major}.{version.minor}.{version.micro}", True)
        return True
    else:
        print_status(f"Python version {version.major}.{version.minor} (requires 3.11+)", False)
        return False


async def check_dependencies() -> bool:
    """Check if required packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "asyncpg",
        "httpx",
        "pydantic",
        "pydantic_settings",
        "alembic",
    ]

    all_installed = True
    for package in required_packages:
        try:
            __import__(package)
            print_status(f"Package '{package}' installed", True)
        except ImportError:
            print_status(f"Package '{package}' missing", False)
            all_installed = False

    return all_installed


async def check_env_file() -> bool:
    """Check if .env file exists."""
    if os.path.exists(".env"):
        print_status(".env file exists", True)
        return True
    else:
        print_status(".env file missing (defaults from app/config.py will be used)", False)
        return False


async def check_section_plans() -> bool:
    """Check the section-plan file loads and every plan is valid."""
    try:
        from app.services.section_plans import load_default_registry

        registry = load_default_registry()
        for report_type in registry.document_types():
            plan = registry.get_plan(report_type)
            independent = len(plan.independent_sections())
            print_status(
                f"Report type '{report_type}': {len(plan)} section(s), {independent} independent",
                True,
            )
        return bool(registry.document_types())

    except Exception as e:
        print_status(f"Section plans invalid: {str(e)}", False)
        return False


async def check_ollama() -> bool:
    """Check if Ollama is running and has the generation model."""
    try:
        import httpx
        from app.config import settings

        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{settings.OLLAMA_BASE_URL}/api/tags")

            if response.status_code == 200:
                print_status("Ollama service is running", True)

                models = response.json().get("models", [])
                model_names = [m["name"] for m in models]

                llm_model = settings.OLLAMA_LLM_MODEL
                has_llm = any(
                    llm_model in name or llm_model.split(":")[0] in name for name in model_names
                )

                print_status(f"LLM model ({llm_model}): {'Found' if has_llm else 'Missing'}", has_llm)

                return has_llm
            else:
                print_status(f"Ollama service error (status {response.status_code})", False)
                return False

    except Exception as e:
        print_status(f"Ollama connection failed: {str(e)}", False)
        print(f"  {YELLOW}Make sure Ollama is installed and running{RESET}")
        print(f"  {YELLOW}Install from: https://ollama.ai/{RESET}")
        return False


async def check_generation() -> bool:
    """Run one tiny generation and one tiny stream through the report backend."""
    try:
        from app.services.llm_client import OllamaLLMService

        backend = OllamaLLMService(timeout=60, stream_read_timeout=60)
        reply = await backend.generate("Reply with the single word: ready")
        print_status(f"Batch generation answered ({len(reply)} chars)", bool(reply.strip()))

        fragments = 0
        async for _fragment in backend.generate_stream("Count from one to five in words."):
            fragments += 1
        print_status(f"Streaming generation delivered {fragments} fragment(s)", fragments > 0)

        return bool(reply.strip()) and fragments > 0

    except Exception as e:
        print_status(f"Generation failed: {str(e)}", False)
        return False


async def check_postgres() -> bool:
    """Check if PostgreSQL is running."""
    try:
        import asyncpg
        from app.config import settings

        # asyncpg wants a plain postgresql:// URL
        dsn = settings.DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://", 1)
        conn = await asyncpg.connect(dsn, timeout=5)

        server_version = await conn.fetchval("SHOW server_version")
        await conn.close()

        print_status(f"PostgreSQL connection successful (server {server_version})", True)
        return True

    except Exception as e:
        print_status(f"PostgreSQL connection failed: {str(e)}", False)
        print(f"  {YELLOW}Run: docker-compose up -d{RESET}")
        return False


async def main():
    """Run all verification checks."""
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}Quire Backend - Setup Verification{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

    checks: List[Tuple[str, callable]] = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Environment File", check_env_file),
        ("Section Plans", check_section_plans),
        ("PostgreSQL", check_postgres),
        ("Ollama + Model", check_ollama),
        ("Report Generation", check_generation),
    ]

    results = []

    for check_name, check_func in checks:
        print(f"\n{BLUE}Checking {check_name}...{RESET}")
        try:
            result = await check_func()
            results.append(result)
        except Exception as e:
            print_status(f"Error during check: {str(e)}", False)
            results.append(False)

    # Summary
    print(f"\n{BLUE}{'='*60}{RESET}")
    passed = sum(results)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed! ({passed}/{total}){RESET}")
        print(f"\n{GREEN}You're ready to run the backend:{RESET}")
        print(f"  uvicorn app.main:app --reload")
    else:
        print(f"{RED}✗ Some checks failed ({passed}/{total} passed){RESET}")
        print(f"\n{YELLOW}Please fix the issues above before running the backend.{RESET}")
        sys.exit(1)

    print(f"{BLUE}{'='*60}{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
