"""
Parsers for Dockerfiles, extracting instructions and arguments.
"""
import json
import re
from typing import List, Tuple
from ..MODELS.dockerfile_ast import DockerfileAST, Instruction

_CONTINUATION = re.compile(r'\\\s*$')
_INSTRUCTION = re.compile(r'^\s*([A-Za-z]+)(?:\s+(.*))?$', re.DOTALL)


class DockerfileParser:
    """
    Parser for Dockerfile instructions.
    """
    def parse(self, dockerfile_path: str) -> DockerfileAST:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            DockerfileAST: The parsed instructions, in file order.
        """
        with open(dockerfile_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> DockerfileAST:
        """
        Parses a Dockerfile from a string content.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            DockerfileAST: The parsed instructions, in file order.
        """
        instructions = []
        for line_no, logical in self._logical_lines(content):
            match = _INSTRUCTION.match(logical)
            if not match:
                continue
            inst = match.group(1).upper()
            args_str = (match.group(2) or '').strip()
            instructions.append(Instruction(
                instruction=inst,
                arguments=self._split_arguments(inst, args_str),
                raw=logical.strip(),
                line=line_no,
            ))
        return DockerfileAST(instructions=instructions)

    def _logical_lines(self, content: str) -> List[Tuple[int, str]]:
        """
        Joins backslash continuations into logical lines. Whole-line
        comments are dropped, including those inside a continued instruction.
        """
        logical = []
        buffer = []
        start = 0
        for number, line in enumerate(content.splitlines(), start=1):
            stripped = line.strip()
            # Blank lines never end a continued instruction
            if not stripped or stripped.startswith('#'):
                continue
            if not buffer:
                start = number
            if _CONTINUATION.search(line):
                buffer.append(_CONTINUATION.sub('', line).strip())
                continue
            buffer.append(stripped)
            logical.append((start, ' '.join(part for part in buffer if part)))
            buffer = []
        if buffer:
            logical.append((start, ' '.join(part for part in buffer if part)))
        return logical

    def _split_arguments(self, inst: str, args_str: str) -> List[str]:
        # Exec form
        if args_str.startswith('[') and args_str.endswith(']'):
            try:
                args = json.loads(args_str)
            except json.JSONDecodeError:
                args = None
            if isinstance(args, list) and all(isinstance(a, str) for a in args):
                return args

        if inst == "ENV":
            if re.match(r'^[A-Za-z_][A-Za-z0-9_]*=', args_str):
                return re.findall(r'([A-Za-z_][A-Za-z0-9_]*=(?:"[^"]*"|\S*))', args_str)
            parts = args_str.split(None, 1)
            if len(parts) == 2:
                return [f"{parts[0]}={parts[1]}"]
            return parts
        return [args_str] if args_str else []
