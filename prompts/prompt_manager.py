import yaml
import os
from pathlib import Path
from typing import Dict, Any, List, Optional
from models.mention import MentionToken
import logging

logger = logging.getLogger(__name__)


class PromptManager:
    """
    Manages prompt templates with hot-reload support

    Loads prompts from YAML files and provides methods to build
    prompts with dynamic context injection.
    """

    def __init__(self, prompts_dir: Optional[str] = None):
        if prompts_dir is None:
            # Default to prompts/ directory in the same location as this file
            prompts_dir = Path(__file__).parent

        self.prompts_dir = Path(prompts_dir)
        self.cache: Dict[str, Dict[str, Any]] = {}
        logger.info(f"PromptManager initialized with directory: {self.prompts_dir}")

    def get_prompt_config(self, prompt_name: str) -> Dict[str, Any]:
        """
        Load prompt configuration from YAML file with hot-reload support

        Args:
            prompt_name: Name of the prompt file (without .yaml extension)

        Returns:
            Dictionary containing the prompt configuration
        """
        filepath = self.prompts_dir / f"{prompt_name}.yaml"

        if not filepath.exists():
            raise FileNotFoundError(f"Prompt file not found: {filepath}")

        # Get file modification time for hot-reload
        mtime = os.path.getmtime(filepath)

        cache_key = prompt_name

        # Check if we need to reload (file changed or not in cache)
        if cache_key not in self.cache or self.cache[cache_key].get('mtime') != mtime:
            logger.info(f"Loading/reloading prompt: {prompt_name}")
            with open(filepath, 'r') as f:
                config = yaml.safe_load(f)

            self.cache[cache_key] = {
                'data': config,
                'mtime': mtime
            }

        return self.cache[cache_key]['data']

    def build_support_system_prompt(
        self,
        session_id: str,
        supporter_id: str,
        mentions: List[MentionToken]
    ) -> str:
        """
        Build the support agent system prompt using the YAML configuration

        Args:
            session_id: Current chat session
            supporter_id: Supporter the agent acts on behalf of
            mentions: Entities referenced in the current message

        Returns:
            Complete system prompt string
        """
        config = self.get_prompt_config("support_agent")

        sections = [config['system_role'].format(session_id=session_id, supporter_id=supporter_id)]

        if config.get('mention_format'):
            sections.append(f"\n{config['mention_format']}")

        if mentions:
            sections.append(self._build_mentions_section(mentions, config.get('mentions_section', {})))

        # Add instructions
        if config.get('instructions'):
            sections.append("\nINSTRUCTIONS:")
            for i, instruction in enumerate(config['instructions'], 1):
                sections.append(f"{i}. {instruction}")

        # Add critical guidelines
        if config.get('critical_guidelines'):
            sections.append("\nCRITICAL:")
            for guideline in config['critical_guidelines']:
                sections.append(f"- {guideline}")

        return "\n".join(sections)

    def _build_mentions_section(self, mentions: List[MentionToken], config: Dict) -> str:
        """Build referenced entities section"""
        max_items = config.get('max_items', 10)
        header = config.get('header', 'Referenced Entities:')
        format_str = config.get('format', '- {entity_type} {entity_id}: {display_name}')

        lines = [f"\n{header}"]
        for mention in mentions[:max_items]:
            lines.append(format_str.format(
                entity_type=mention.entity_type.value,
                entity_id=mention.entity_id,
                display_name=mention.display_name
            ))

        return "\n".join(lines)


# Singleton instance
prompt_manager = PromptManager()
