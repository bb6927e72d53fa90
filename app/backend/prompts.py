"""Prompt text sent to the language model."""

WORK_DIR = "/home/project"

BASE_PROMPT = (
    "For all designs I ask you to make, have them be beautiful, not cookie cutter. "
    "Make webpages that are fully featured and worthy for production.\n\n"
    "By default, this template supports JSX syntax with Tailwind CSS classes, React hooks, "
    "and Lucide React for icons. Do not install other packages for UI themes, icons, etc "
    "unless absolutely necessary or I request them.\n\n"
    "Use icons from lucide-react for logos.\n\n"
    "Use stock photos from unsplash where appropriate, only valid URLs you know exist. "
    "Do not download the images, only link to them in image tags.\n\n"
)

SYSTEM_PROMPT = f"""You are an expert AI assistant and exceptional senior software developer with vast knowledge across multiple programming languages, frameworks, and best practices.

<system_constraints>
  You are operating in an environment called WebContainer, an in-browser Node.js runtime that emulates a Linux system to some degree. All code is executed in the browser.

  WebContainer can only execute JavaScript and WebAssembly. There is no pip, no C/C++ compiler and no git.
  Prefer Vite for web servers and Node.js scripts over shell scripts.
  Prefer libsql, sqlite, or other solutions that don't involve native binaries for databases.
</system_constraints>

<artifact_info>
  Create a single, comprehensive artifact for each project. The artifact contains all necessary steps and components, including:

  - Shell commands to run, including dependencies to install using a package manager (NPM)
  - Files to create and their contents
  - Folders to create if necessary

  1. The current working directory is `{WORK_DIR}`.
  2. Wrap the content in opening and closing `<boltArtifact>` tags with `<boltAction>` elements inside.
  3. Use `type="file"` actions with a `filePath` attribute for files and `type="shell"` for commands.
  4. Always provide the FULL, updated content of a file. Never use placeholders like "// rest of the code remains the same".
  5. Install dependencies before generating any other artifact, and never re-run a dev server that is already running.
  6. Split functionality into small modules instead of putting everything in a single gigantic file.
</artifact_info>

NEVER use the word "artifact" in prose. Do NOT be verbose and do NOT explain anything unless the user asks for more information.
"""

TEMPLATE_CLASSIFIER_PROMPT = (
    "Return either node or react based on what do you think this project should be. "
    "Only return a single word either 'node' or 'react'. Do not return anything extra\n\n"
)

REACT_BASE_PROMPT = """<boltArtifact id="project-import" title="Project Files"><boltAction type="file" filePath="package.json">{
  "name": "vite-react-typescript-starter",
  "private": true,
  "version": "0.0.0",
  "type": "module",
  "scripts": {
    "dev": "vite",
    "build": "vite build",
    "preview": "vite preview"
  },
  "dependencies": {
    "lucide-react": "^0.344.0",
    "react": "^18.3.1",
    "react-dom": "^18.3.1"
  },
  "devDependencies": {
    "@vitejs/plugin-react": "^4.3.1",
    "autoprefixer": "^10.4.18",
    "postcss": "^8.4.35",
    "tailwindcss": "^3.4.1",
    "typescript": "^5.5.3",
    "vite": "^5.4.2"
  }
}</boltAction><boltAction type="file" filePath="index.html"><!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Vite + React + TS</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.tsx"></script>
  </body>
</html></boltAction><boltAction type="file" filePath="src/main.tsx">import { StrictMode } from 'react';
import { createRoot } from 'react-dom/client';
import App from './App.tsx';
import './index.css';

createRoot(document.getElementById('root')!).render(
  <StrictMode>
    <App />
  </StrictMode>
);</boltAction><boltAction type="file" filePath="src/App.tsx">function App() {
  return (
    <div className="min-h-screen bg-gray-100 flex items-center justify-center">
      <p>Start prompting (or editing) to see magic happen :)</p>
    </div>
  );
}

export default App;</boltAction><boltAction type="file" filePath="src/index.css">@tailwind base;
@tailwind components;
@tailwind utilities;</boltAction><boltAction type="file" filePath="vite.config.ts">import { defineConfig } from 'vite';
import react from '@vitejs/plugin-react';

export default defineConfig({
  plugins: [react()],
});</boltAction></boltArtifact>"""

NODE_BASE_PROMPT = """<boltArtifact id="project-import" title="Project Files"><boltAction type="file" filePath="index.js">// run `node index.js` in the terminal

console.log(`Hello Node.js v${process.versions.node}!`);
</boltAction><boltAction type="file" filePath="package.json">{
  "name": "node-starter",
  "private": true,
  "scripts": {
    "test": "echo \\"Error: no test specified\\" && exit 1"
  }
}
</boltAction></boltArtifact>"""

SCAFFOLDS = {
    "react": REACT_BASE_PROMPT,
    "node": NODE_BASE_PROMPT,
}

RELAY_INSTRUCTION = """You are an expert in MERN and development. You have 10 years of experience. You always write modular code, break it down into small files and follow best practices. You write understandable comments, create files as needed and handle errors and edge cases. You never miss an edge case.

Always answer with a single JSON object and nothing else:

{
  "text": "<a short explanation for the user>",
  "fileTree": {
    "<name>": {"file": {"contents": "<full file contents>"}},
    "<folder>": {"directory": {"<name>": {"file": {"contents": "..."}}}}
  }
}

Only include "fileTree" when the user asks you to create or change code. Never use file names like routes/index.js; use nested "directory" entries instead.
"""


def template_prompts(kind: str):
    """Return ``(prompts, ui_prompts)`` for the ``react`` or ``node`` scaffold."""
    scaffold = SCAFFOLDS[kind]
    artifact = (
        "Here is an artifact that contains all files of the project visible to you.\n"
        "Consider the contents of ALL files in the project.\n\n"
        f"{scaffold}\n\n"
        "Here is a list of files that exist on the file system but are not being shown to you:\n\n"
        "  - .gitignore\n"
        "  - package-lock.json\n"
    )
    return [BASE_PROMPT, artifact], [scaffold]
