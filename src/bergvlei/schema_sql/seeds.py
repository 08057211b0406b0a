"""Seed data INSERT statements."""

STARTER_RIDDLES = """
INSERT INTO riddles (question, answer, difficulty, category, hints)
VALUES
    ('What has keys but can''t open locks?', 'piano', 'EASY', 'objects',
     '["It makes music","It has black and white parts","You play it with your fingers"]'::jsonb),
    ('What gets wetter the more it dries?', 'towel', 'EASY', 'objects',
     '["You use it after a shower","It is made of fabric","It hangs in the bathroom"]'::jsonb),
    ('What has a head and a tail but no body?', 'coin', 'EASY', 'objects',
     '["You can flip it","It is made of metal","You keep it in your wallet"]'::jsonb),
    ('The more you take, the more you leave behind. What am I?', 'footsteps', 'MEDIUM', 'nature',
     '["Think about walking","They appear on a beach","You make them with your feet"]'::jsonb),
    ('What can travel around the world while staying in a corner?', 'stamp', 'MEDIUM', 'objects',
     '["It goes on mail","It is small and sticky","Collectors love it"]'::jsonb),
    ('I speak without a mouth and hear without ears. I have no body, but I come alive with wind. What am I?',
     'echo', 'HARD', 'nature',
     '["You hear it in mountains","It repeats you","Sound bounces back"]'::jsonb),
    ('What disappears as soon as you say its name?', 'silence', 'HARD', 'abstract',
     '["It is not a thing you can hold","Libraries ask for it","Speaking breaks it"]'::jsonb),
    ('I have cities, but no houses. I have mountains, but no trees. I have water, but no fish. What am I?',
     'map', 'EXPERT', 'objects',
     '["You read it","Travelers use it","It can be folded"]'::jsonb);
"""

ALL = [STARTER_RIDDLES]
