"""Alias tables and display-name normalization per category type."""

import re

TECHNOLOGY_ALIASES = {
    "ruby on rails": "Rails",
    "ror": "Rails",
    "rails": "Rails",
    "ruby": "Ruby",
    "javascript": "JavaScript",
    "js": "JavaScript",
    "typescript": "TypeScript",
    "ts": "TypeScript",
    "node.js": "Node.js",
    "nodejs": "Node.js",
    "node": "Node.js",
    "python": "Python",
    "py": "Python",
    "golang": "Go",
    "go": "Go",
    "java": "Java",
    "rust": "Rust",
    "c++": "C++",
    "cpp": "C++",
    "c#": "C#",
    "csharp": "C#",
    "php": "PHP",
    "react": "React",
    "reactjs": "React",
    "vue": "Vue.js",
    "vuejs": "Vue.js",
    "vue.js": "Vue.js",
    "angular": "Angular",
    "angularjs": "Angular",
    "django": "Django",
    "flask": "Flask",
    "spring": "Spring",
    "laravel": "Laravel",
    "elixir": "Elixir",
    "kotlin": "Kotlin",
    "swift": "Swift",
    "postgresql": "PostgreSQL",
    "postgres": "PostgreSQL",
    "pg": "PostgreSQL",
    "mysql": "MySQL",
    "mongodb": "MongoDB",
    "mongo": "MongoDB",
    "redis": "Redis",
    "elasticsearch": "Elasticsearch",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "k8s": "Kubernetes",
}

PROBLEM_DOMAIN_ALIASES = {
    "auth": "Authentication",
    "ml": "Machine Learning",
    "ai": "Artificial Intelligence",
    "ci/cd": "CI/CD",
    "cicd": "CI/CD",
    "cache": "Caching",
    "payment process": "Payment Processing",
    "payment processing": "Payment Processing",
}

ACRONYMS = {
    a.lower(): a for a in (
        "API", "REST", "GraphQL", "SQL", "HTTP", "HTTPS", "URL", "URI", "JSON",
        "XML", "HTML", "CSS", "JS", "AI", "ML", "CI", "CD", "GPU", "CPU", "SaaS", "CLI",
    )
}

DEFAULT_DESCRIPTIONS = {
    "technology": "{name} programming language and tools",
    "problem_domain": "Tools and libraries for {lower}",
    "architecture_pattern": "{name} architectural pattern and related tools",
    "maturity": "{name} projects",
}

_SLUG_SYMBOLS = (("++", " plus plus "), ("#", " sharp "), ("+", " plus "))
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def titleize(name: str) -> str:
    return " ".join(word.capitalize() for word in name.strip().split())


def titleize_preserving_hyphens(name: str) -> str:
    """Title-case each word, keeping hyphens and known acronyms.

    e.g. "event-driven" -> "Event-Driven", "cli tools" -> "CLI Tools"
    """
    parts = []
    for part in name.strip().split("-"):
        words = [ACRONYMS.get(word.lower(), word.capitalize()) for word in part.split()]
        parts.append(" ".join(words))
    return "-".join(parts)


def normalize_name(name: str, category_type: str) -> str:
    """Collapse known spelling variants to a canonical display name."""
    if not name or not name.strip():
        return name
    key = name.strip().lower()
    if category_type == "technology":
        return TECHNOLOGY_ALIASES.get(key) or titleize(name)
    if category_type == "problem_domain":
        return PROBLEM_DOMAIN_ALIASES.get(key) or titleize_preserving_hyphens(name)
    return titleize_preserving_hyphens(name)


def symbol_words(name: str) -> str:
    """Spell out + and # so "C++" and "C#" stay distinct after tokenizing."""
    text = name.lower()
    for symbol, words in _SLUG_SYMBOLS:
        text = text.replace(symbol, words)
    return text


def slugify(name: str) -> str:
    return _NON_ALNUM.sub("-", symbol_words(name)).strip("-")


def default_description(name: str, category_type: str) -> str:
    template = DEFAULT_DESCRIPTIONS.get(category_type)
    if template is None:
        return "Auto-generated category"
    return template.format(name=name, lower=name.lower())
