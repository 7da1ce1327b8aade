import re

def clean_text(s: str) -> str:
    if not s:
        return ""
    s = s.replace('\u200b', ' ').replace('\xa0', ' ').replace('\r\n', '\n')
    s = re.sub(r'[ \t]+', ' ', s)
    s = re.sub(r' *\n *', '\n', s)
    s = re.sub(r'\n{3,}', '\n\n', s)
    return s.strip()
